[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "anubiskit"
version = "0.1.0"
description = "Building blocks for a bot-filtering gateway: WSGI middleware, X-Forwarded-For handling, Open Graph tag caching, DNSBL lookups and IP-to-ASN checks."
requires-python = ">=3.10"
dependencies = [
    "httpx",
]
keywords = [
    "wsgi",
    "middleware",
    "x-forwarded-for",
    "opengraph",
    "dnsbl",
    "asn",
    "geoip",
    "bot-protection",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: WSGI :: Middleware",
    "Topic :: Internet :: Proxy Servers",
    "Topic :: Security",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["anubiskit"]

[tool.hatch.build.targets.sdist]
include = [
    "anubiskit",
    "tests",
]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
