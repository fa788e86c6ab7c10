"""WSGI middleware for caching headers, client addresses, gzip and browsing."""

from __future__ import annotations

import ipaddress
import logging
import mimetypes
import zlib
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator

logger = logging.getLogger(__name__)

mimetypes.add_type("text/javascript", ".mjs")

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address

CGNAT = ipaddress.ip_network("100.64.0.0/10")

_PRIVATE_NETWORKS = (
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("fc00::/7"),
)
_LOOPBACK_NETWORKS = (
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("::1/128"),
)
_LINK_LOCAL_NETWORKS = (
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("fe80::/10"),
)
_BROADCAST = ipaddress.IPv4Address("255.255.255.255")

WSGIApp = Callable[[dict, Callable], Iterable[bytes]]


@dataclass(frozen=True)
class XFFComputePreferences:
    """Which addresses to drop from an X-Forwarded-For chain, and whether to flatten it."""

    strip_private: bool = False
    strip_loopback: bool = False
    strip_cgnat: bool = False
    strip_llu: bool = False
    flatten: bool = False


class CantSplitHostPortError(ValueError):
    """The remote address is not of the form host:port."""


class CantParseRemoteIPError(ValueError):
    """The host part of the remote address is not an IP address."""


def _in_any(addr: IPAddress, networks) -> bool:
    return any(addr in network for network in networks)


def _unmapped(addr: IPAddress) -> IPAddress:
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        return addr.ipv4_mapped
    return addr


def _is_public(addr: IPAddress) -> bool:
    addr = _unmapped(addr)
    not_global_unicast = (
        addr.is_loopback
        or addr.is_link_local
        or addr.is_multicast
        or addr.is_unspecified
        or addr == _BROADCAST
    )
    return not not_global_unicast and not _in_any(addr, _PRIVATE_NETWORKS)


def parse_xff(header: str) -> str:
    """Return the first public address in an X-Forwarded-For value, or ''."""
    for part in header.split(","):
        candidate = part.strip()
        try:
            addr = ipaddress.ip_address(candidate)
        except ValueError:
            continue
        if _is_public(addr):
            return candidate
    return ""


def _split_host_port(hostport: str) -> tuple[str, str]:
    if hostport.startswith("["):
        end = hostport.find("]")
        if end < 0:
            raise CantSplitHostPortError(f"address {hostport}: missing ']' in address")
        host, rest = hostport[1:end], hostport[end + 1 :]
        if not rest.startswith(":"):
            raise CantSplitHostPortError(f"address {hostport}: missing port in address")
        port = rest[1:]
    else:
        index = hostport.rfind(":")
        if index < 0:
            raise CantSplitHostPortError(f"address {hostport}: missing port in address")
        host, port = hostport[:index], hostport[index + 1 :]
        if ":" in host:
            raise CantSplitHostPortError(f"address {hostport}: too many colons in address")
    if ":" in port or "[" in host or "]" in host:
        raise CantSplitHostPortError(f"address {hostport}: unexpected characters")
    return host, port


def compute_xff_header(remote_addr: str, orig_xff_header: str, pref: XFFComputePreferences) -> str:
    """Append the remote address to an X-Forwarded-For chain and strip trusted hops.

    Raises CantSplitHostPortError or CantParseRemoteIPError for a bad remote address.
    """
    remote_host, _ = _split_host_port(remote_addr)
    try:
        remote_ip = ipaddress.ip_address(remote_host)
    except ValueError as exc:
        raise CantParseRemoteIPError(f"unable to parse remote IP {remote_host!r}: {exc}") from exc

    chain = [part.strip() for part in orig_xff_header.split(",")] if orig_xff_header else []
    chain.append(str(remote_ip))

    kept: list[str] = []
    for segment in reversed(chain):
        try:
            addr = ipaddress.ip_address(segment)
        except ValueError as exc:
            # The rest of the chain cannot be trusted past an unparseable hop.
            logger.debug("failed to parse XFF segment: %s", exc)
            break
        if pref.strip_private and _in_any(addr, _PRIVATE_NETWORKS):
            continue
        if pref.strip_loopback and _in_any(addr, _LOOPBACK_NETWORKS):
            continue
        if pref.strip_llu and _in_any(addr, _LINK_LOCAL_NETWORKS):
            continue
        if pref.strip_cgnat and addr in CGNAT:
            continue
        kept.append(str(addr))
    kept.reverse()

    if not kept:
        return ""
    if pref.flatten:
        return kept[-1]
    return ",".join(kept)


def _with_default_header(app: WSGIApp, name: str, value: str) -> WSGIApp:
    lowered = name.lower()

    def wrapped(environ, start_response):
        def patched_start_response(status, headers, exc_info=None):
            if not any(key.lower() == lowered for key, _ in headers):
                headers = [*headers, (name, value)]
            return start_response(status, headers, exc_info)

        return app(environ, patched_start_response)

    return wrapped


def unchanging_cache(app: WSGIApp, version: str) -> WSGIApp:
    """Mark responses cacheable for a year unless running a development build."""
    if version == "devel":
        return app
    return _with_default_header(app, "Cache-Control", "public, max-age=31536000")


def remote_x_real_ip(use_remote_address: bool, bind_network: str, app: WSGIApp) -> WSGIApp:
    """Set X-Real-Ip from the connection's remote address when enabled."""
    if not use_remote_address:
        logger.debug("skipping middleware, useRemoteAddress is empty")
        return app

    if bind_network == "unix":

        def unix_wrapped(environ, start_response):
            environ["HTTP_X_REAL_IP"] = "127.0.0.1"
            return app(environ, start_response)

        return unix_wrapped

    def wrapped(environ, start_response):
        host = environ["REMOTE_ADDR"]
        if host.startswith("[") and host.endswith("]"):
            host = host[1:-1]
        environ["HTTP_X_REAL_IP"] = host
        return app(environ, start_response)

    return wrapped


def x_forwarded_for_to_x_real_ip(app: WSGIApp) -> WSGIApp:
    """Fill in X-Real-Ip from X-Forwarded-For when it is not already set."""

    def wrapped(environ, start_response):
        xff = environ.get("HTTP_X_FORWARDED_FOR", "")
        if not environ.get("HTTP_X_REAL_IP") and xff:
            real_ip = parse_xff(xff)
            logger.debug("setting x-real-ip to %s", real_ip)
            environ["HTTP_X_REAL_IP"] = real_ip
        return app(environ, start_response)

    return wrapped


def _remote_addr(environ: dict) -> str:
    host = environ.get("REMOTE_ADDR", "")
    if host == "@":
        return host
    port = environ.get("REMOTE_PORT") or "0"
    if ":" in host and not host.startswith("["):
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def x_forwarded_for_update(strip_private: bool, app: WSGIApp) -> WSGIApp:
    """Append the remote address to X-Forwarded-For, stripping trusted hops."""
    pref = XFFComputePreferences(
        strip_private=strip_private,
        strip_loopback=True,
        strip_cgnat=True,
        strip_llu=True,
        flatten=True,
    )

    def wrapped(environ, start_response):
        remote = _remote_addr(environ)
        if remote != "@":
            try:
                header = compute_xff_header(remote, environ.get("HTTP_X_FORWARDED_FOR", ""), pref)
            except ValueError as exc:
                logger.debug("computing X-Forwarded-For header failed: %s", exc)
            else:
                if header:
                    environ["HTTP_X_FORWARDED_FOR"] = header
                else:
                    environ.pop("HTTP_X_FORWARDED_FOR", None)
        return app(environ, start_response)

    return wrapped


def no_store_cache(app: WSGIApp) -> WSGIApp:
    """Mark responses as not to be stored by caches."""
    return _with_default_header(app, "Cache-Control", "no-store")


def no_browsing(app: WSGIApp) -> WSGIApp:
    """Answer 404 for any path that ends in '/', so directories are not listed."""

    def wrapped(environ, start_response):
        path = environ.get("SCRIPT_NAME", "") + environ.get("PATH_INFO", "")
        if (path or "/").endswith("/"):
            start_response(
                "404 Not Found",
                [
                    ("Content-Type", "text/plain; charset=utf-8"),
                    ("X-Content-Type-Options", "nosniff"),
                ],
            )
            return [b"404 page not found\n"]
        return app(environ, start_response)

    return wrapped


def _compressor(level: int):
    if level == -2:
        return zlib.compressobj(zlib.Z_DEFAULT_COMPRESSION, zlib.DEFLATED, 31, strategy=zlib.Z_HUFFMAN_ONLY)
    return zlib.compressobj(level, zlib.DEFLATED, 31)


class _GzipBody:
    def __init__(self, body: Iterable[bytes], compressor) -> None:
        self._body = body
        self._compressor = compressor

    def __iter__(self) -> Iterator[bytes]:
        for chunk in self._body:
            out = self._compressor.compress(chunk)
            if out:
                yield out
        yield self._compressor.flush()

    def close(self) -> None:
        close = getattr(self._body, "close", None)
        if close is not None:
            close()


def gzip_middleware(level: int, app: WSGIApp) -> WSGIApp:
    """Gzip-compress responses for clients that accept it.

    ``level`` is -2 (Huffman only), -1 (default) or 0..9.
    """
    if not -2 <= level <= 9:
        raise ValueError(f"gzip: invalid compression level: {level}")

    def wrapped(environ, start_response):
        if "gzip" not in environ.get("HTTP_ACCEPT_ENCODING", ""):
            return app(environ, start_response)

        compressor = _compressor(level)

        def gzip_start_response(status, headers, exc_info=None):
            headers = [
                (key, value)
                for key, value in headers
                if key.lower() not in ("content-encoding", "content-length")
            ]
            headers.append(("Content-Encoding", "gzip"))
            write = start_response(status, headers, exc_info)

            def gzip_write(data: bytes) -> None:
                out = compressor.compress(data)
                if out:
                    write(out)

            return gzip_write

        return _GzipBody(app(environ, gzip_start_response), compressor)

    return wrapped