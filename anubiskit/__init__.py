"""WSGI middleware, hashing, logging, DNSBL and IP-to-ASN lookups, and an Open Graph tag cache."""

__version__ = "0.1.0"