"""Fetch, filter and cache the Open Graph metadata of backend pages."""

from __future__ import annotations

import errno
import json
import logging
import re
import threading
import time
from dataclasses import dataclass, field
from datetime import timedelta
from html.parser import HTMLParser
from typing import Iterable
from urllib.parse import quote, unquote, urlsplit

import httpx

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 8 << 20
HTTP_TIMEOUT = 5.0
USER_AGENT = "Anubis-OGTag-Fetcher/1.0"

DEFAULT_APPROVED_TAGS = ("description", "keywords", "author")
DEFAULT_APPROVED_PREFIXES = ("og:", "twitter:", "fediverse:")

_CACHE_PREFIX = "ogtags:"
_UNIX_PREFIX = "http://unix"

# Characters left as-is when escaping a URL path.
_PATH_SAFE = "$&+,/:;=@"
# Characters allowed in an already-escaped path that is kept verbatim.
_RAW_PATH_CHARS = frozenset(
    "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
    "-_.~$&+,/:;=@!'()*[]%"
)

_MEDIA_WORD = r"[!#$%&'*+\-.^_`|~0-9A-Za-z]+"
_MEDIA_TYPE_RE = re.compile(rf"\s*({_MEDIA_WORD})(?:\s*/\s*({_MEDIA_WORD}))?\s*")
_MEDIA_PARAM_RE = re.compile(
    rf'\s*;\s*(?:{_MEDIA_WORD}\s*=\s*(?:{_MEDIA_WORD}|"(?:[^"\\]|\\.)*"))?\s*'
)
_HTML_TYPES = ("text/html", "application/xhtml+xml")


def _seconds(value: float | timedelta | None) -> float:
    if value is None:
        return 0.0
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


@dataclass
class OpenGraphConfig:
    """Open Graph passthrough settings; ``time_to_live`` is in seconds."""

    enabled: bool = False
    time_to_live: float | timedelta = 0.0
    consider_host: bool = False
    override: dict[str, str] = field(default_factory=dict)


class MemoryStore:
    """A thread-safe in-memory key/value store with per-entry expiry."""

    def __init__(self) -> None:
        self._entries: dict[str, tuple[bytes, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> bytes:
        """Return the value for ``key``; raise KeyError if missing or expired."""
        with self._lock:
            value, expires = self._entries[key]
            if time.monotonic() >= expires:
                del self._entries[key]
                raise KeyError(key)
            return value

    def set(self, key: str, value: bytes, ttl: float | timedelta) -> None:
        """Store ``value`` under ``key`` for ``ttl`` seconds."""
        with self._lock:
            self._entries[key] = (bytes(value), time.monotonic() + _seconds(ttl))


class OGHandledError(Exception):
    """A fetch failure that was dealt with and yields no tags."""


def is_og_meta_tag(tag: str | None) -> bool:
    """Return True if ``tag`` names a meta element."""
    return tag is not None and tag.lower() == "meta"


class _MetaCollector(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.metas: list[list[tuple[str, str]]] = []

    def handle_starttag(self, tag, attrs):
        if is_og_meta_tag(tag):
            self.metas.append([(key, value or "") for key, value in attrs])


def _escaped_path(raw: str) -> str:
    if raw == "*" or all(char in _RAW_PATH_CHARS for char in raw):
        return raw
    return quote(unquote(raw), safe=_PATH_SAFE)


def _media_type(content_type: str) -> str:
    match = _MEDIA_TYPE_RE.match(content_type)
    if match is None:
        raise ValueError("mime: no media type")
    pos = match.end()
    while pos < len(content_type):
        param = _MEDIA_PARAM_RE.match(content_type, pos)
        if param is None or param.end() == pos:
            raise ValueError("mime: invalid media parameter")
        pos = param.end()
    main, sub = match.group(1), match.group(2)
    return (f"{main}/{sub}" if sub else main).lower()


def _connection_refused(exc: BaseException) -> bool:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, ConnectionRefusedError):
            return True
        if isinstance(current, OSError) and current.errno == errno.ECONNREFUSED:
            return True
        current = current.__cause__ or current.__context__
    return False


class OGTagCache:
    """Fetches Open Graph tags from a backend and caches them in a store."""

    def __init__(
        self,
        target: str,
        conf: OpenGraphConfig | None = None,
        backend: MemoryStore | None = None,
    ) -> None:
        conf = conf if conf is not None else OpenGraphConfig()
        if not target:
            target = "http://localhost"
        elif "://" not in target and not target.startswith("unix:") and not urlsplit(target).netloc:
            target = "http://" + target

        self.target_url = urlsplit(target)
        self.cache = backend if backend is not None else MemoryStore()
        self.og_passthrough = conf.enabled
        self.og_time_to_live = _seconds(conf.time_to_live)
        self.og_cache_consider_host = conf.consider_host
        self.og_override = dict(conf.override)
        self.approved_tags = list(DEFAULT_APPROVED_TAGS)
        self.approved_prefixes = list(DEFAULT_APPROVED_PREFIXES)
        self.socket_path = self.target_url.path if self.target_url.scheme == "unix" else None

    def get_og_tags(self, url: str | None, original_host: str) -> dict[str, str] | None:
        """Return approved tags for the page at ``url``, or None if none could be had."""
        if url is None:
            raise ValueError("nil URL provided, cannot fetch OG tags")
        if self.og_override:
            return dict(self.og_override)

        parts = urlsplit(url)
        target = self._build_target(_escaped_path(parts.path), parts.query)
        cache_key = self.generate_cache_key(target, original_host)

        cached = self.check_cache(cache_key)
        if cached is not None:
            return cached

        try:
            document = self.fetch_html_document(target, original_host, cache_key)
        except ConnectionRefusedError:
            logger.debug("Connection refused, returning empty tags")
            return None
        except OGHandledError:
            return None

        tags = self.extract_og_tags(document)
        self._cache_set(cache_key, tags, self.og_time_to_live)
        return tags

    def get_target(self, path: str, query: str) -> str:
        """Return the backend URL for a request path (unescaped) and raw query."""
        escaped = "*" if path == "*" else quote(path, safe=_PATH_SAFE)
        return self._build_target(escaped, query)

    def _build_target(self, escaped_path: str, query: str) -> str:
        if self.target_url.scheme == "unix":
            base = _UNIX_PREFIX
        else:
            base = f"{self.target_url.scheme}://{self.target_url.netloc}"
        result = base + escaped_path
        if query:
            result += "?" + query
        return result

    def generate_cache_key(self, target: str, original_host: str) -> str:
        """Return the cache key for a target, including the host if so configured."""
        if self.og_cache_consider_host:
            return f"{target}|{original_host}"
        return target

    def check_cache(self, cache_key: str) -> dict[str, str] | None:
        """Return the cached tags for ``cache_key``, or None on a miss."""
        try:
            tags = self._cache_get(cache_key)
        except (KeyError, ValueError):
            logger.debug("cache miss: %s", cache_key)
            return None
        logger.debug("cache hit: %s", tags)
        return tags

    def _cache_get(self, key: str) -> dict[str, str]:
        return json.loads(self.cache.get(_CACHE_PREFIX + key))

    def _cache_set(self, key: str, tags: dict[str, str], ttl: float) -> None:
        self.cache.set(_CACHE_PREFIX + key, json.dumps(tags).encode("utf-8"), ttl)

    def _client(self) -> httpx.Client:
        transport = httpx.HTTPTransport(uds=self.socket_path) if self.socket_path else None
        return httpx.Client(timeout=HTTP_TIMEOUT, follow_redirects=True, transport=transport)

    def fetch_html_document(self, url: str, original_host: str, cache_key: str) -> str:
        """Fetch ``url`` and return its HTML text.

        Raises OGHandledError for non-OK or non-HTML responses, ValueError for a
        missing Content-Type or an oversized body, and ConnectionError (or a
        subclass) when the request itself fails.
        """
        headers = {"X-Forwarded-Proto": "https", "User-Agent": USER_AGENT}
        if original_host:
            headers["Host"] = original_host
        try:
            with self._client() as client, client.stream("GET", url, headers=headers) as resp:
                return self._read_document(resp, url, cache_key)
        except httpx.InvalidURL as exc:
            raise ValueError(f"failed to create http request: {exc}") from exc
        except httpx.TimeoutException as exc:
            logger.debug("og: request timed out: %s", url)
            self._cache_set(cache_key, {}, self.og_time_to_live / 2)
            raise TimeoutError(f"http get failed: {exc}") from exc
        except httpx.HTTPError as exc:
            if _connection_refused(exc):
                raise ConnectionRefusedError(errno.ECONNREFUSED, f"http get failed: {exc}") from exc
            raise ConnectionError(f"http get failed: {exc}") from exc

    def _read_document(self, resp: httpx.Response, url: str, cache_key: str) -> str:
        if resp.status_code != 200:
            logger.debug("og: received non-OK status code %d for %s", resp.status_code, url)
            self._cache_set(cache_key, {}, self.og_time_to_live)
            raise OGHandledError("page not found")

        content_type = resp.headers.get("Content-Type", "")
        if not content_type:
            raise ValueError("missing Content-Type header")
        try:
            media_type = _media_type(content_type)
        except ValueError as exc:
            logger.debug("og: malformed Content-Type header %r for %s", content_type, url)
            raise OGHandledError(f"malformed Content-Type header: {exc}") from exc
        if media_type not in _HTML_TYPES:
            logger.debug("og: unsupported Content-Type %s for %s", media_type, url)
            raise OGHandledError(f"unsupported Content-Type: {media_type}")

        body = bytearray()
        for chunk in resp.iter_bytes():
            body += chunk
            if len(body) > MAX_CONTENT_LENGTH:
                logger.debug("og: content exceeded max length for %s", url)
                raise ValueError(f"content too large: exceeded {MAX_CONTENT_LENGTH} bytes")

        encoding = resp.charset_encoding or "utf-8"
        try:
            return body.decode(encoding, errors="replace")
        except LookupError:
            return body.decode("utf-8", errors="replace")

    def extract_og_tags(self, html_text: str) -> dict[str, str]:
        """Return the approved meta properties of an HTML document and their content."""
        collector = _MetaCollector()
        collector.feed(html_text)
        collector.close()
        tags: dict[str, str] = {}
        for attrs in collector.metas:
            prop, content = self.extract_meta_tag_info(attrs)
            if prop:
                tags[prop] = content
        return tags

    def extract_meta_tag_info(self, attrs: Iterable[tuple[str, str | None]]) -> tuple[str, str]:
        """Return (property, content) of a meta tag; property is '' if not approved."""
        prop = ""
        content = ""
        for key, value in attrs:
            value = value or ""
            if key in ("property", "name"):
                prop = value
            elif key == "content":
                content = value
            if prop and content:
                break

        if not prop:
            return "", content
        if any(prop.startswith(prefix) for prefix in self.approved_prefixes):
            return prop, content
        if prop in self.approved_tags:
            return prop, content
        return "", content