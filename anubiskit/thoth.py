"""Client for the IP intelligence service and the checkers built on it."""

from __future__ import annotations

import contextvars
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from contextlib import contextmanager
from typing import Iterable, Iterator, Mapping

from anubiskit.hashing import fast_hash
from anubiskit.iptoasn import IPToASNService, LookupResponse, mock_ip_to_asn_service

logger = logging.getLogger(__name__)

LOOKUP_TIMEOUT = 0.5

_executor: ThreadPoolExecutor | None = None
_executor_lock = threading.Lock()


def _get_executor() -> ThreadPoolExecutor:
    global _executor
    with _executor_lock:
        if _executor is None:
            _executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="thoth")
        return _executor


def _lookup(service: IPToASNService, ip_address: str) -> LookupResponse | None:
    future = _get_executor().submit(service.lookup, ip_address)
    try:
        return future.result(timeout=LOOKUP_TIMEOUT)
    except FutureTimeout as exc:
        logger.debug("error contacting thoth: %s (actionable: false)", exc or "deadline exceeded")
    except Exception as exc:
        logger.error("error contacting thoth, please contact support: %s (actionable: true)", exc)
    return None


def _real_ip(headers: Mapping[str, str]) -> str:
    if "HTTP_X_REAL_IP" in headers:
        return headers["HTTP_X_REAL_IP"]
    for key, value in headers.items():
        if isinstance(key, str) and key.lower() == "x-real-ip":
            return value
    return ""


def auth_metadata(token: str) -> list[tuple[str, str]]:
    """Return the call metadata that authenticates a request with ``token``."""
    return [("authorization", "Bearer " + token)]


class ASNChecker:
    """Matches requests whose X-Real-Ip is announced by one of a set of ASNs."""

    def __init__(self, ip_to_asn: IPToASNService, asns: Iterable[int], digest: str) -> None:
        self.ip_to_asn = ip_to_asn
        self.asns = frozenset(asns)
        self._hash = digest

    def check(self, headers: Mapping[str, str]) -> bool:
        """Return True if the request's address belongs to one of the ASNs."""
        info = _lookup(self.ip_to_asn, _real_ip(headers))
        if info is None or not info.announced:
            return False
        return (info.as_number & 0xFFFFFFFF) in self.asns

    def hash(self) -> str:
        return self._hash


class GeoIPChecker:
    """Matches requests whose X-Real-Ip is located in one of a set of countries."""

    def __init__(self, ip_to_asn: IPToASNService, countries: Iterable[str], digest: str) -> None:
        self.ip_to_asn = ip_to_asn
        self.countries = frozenset(countries)
        self._hash = digest

    def check(self, headers: Mapping[str, str]) -> bool:
        """Return True if the request's address is in one of the countries."""
        info = _lookup(self.ip_to_asn, _real_ip(headers))
        if info is None or not info.announced:
            return False
        return info.country_code.lower() in self.countries

    def hash(self) -> str:
        return self._hash


class Client:
    """Holds the lookup service and an optional connection to close."""

    def __init__(self, ip_to_asn: IPToASNService | None = None, connection=None) -> None:
        self.ip_to_asn = ip_to_asn
        self._connection = connection

    def with_ip_to_asn_service(self, impl: IPToASNService) -> None:
        self.ip_to_asn = impl

    def close(self) -> None:
        if self._connection is not None:
            self._connection.close()

    def asn_checker_for(self, asns: Iterable[int]) -> ASNChecker:
        asns = list(asns)
        text = "ASNChecker\n" + "".join(f"AS {asn}\n" for asn in asns)
        return ASNChecker(self.ip_to_asn, asns, fast_hash(text))

    def geoip_checker_for(self, countries: Iterable[str]) -> GeoIPChecker:
        countries = list(countries)
        text = "GeoIPChecker\n" + "".join(f"{cc}\n" for cc in countries)
        return GeoIPChecker(self.ip_to_asn, countries, text)


_current: contextvars.ContextVar[Client | None] = contextvars.ContextVar("thoth_client", default=None)


@contextmanager
def use_client(client: Client) -> Iterator[Client]:
    """Make ``client`` the current one for the duration of the block."""
    token = _current.set(client)
    try:
        yield client
    finally:
        _current.reset(token)


def from_context() -> Client | None:
    """Return the current client, or None if none is set."""
    return _current.get()


@contextmanager
def with_mock_thoth() -> Iterator[Client]:
    """Make a client backed by the mock lookup service current for the block."""
    client = Client()
    client.with_ip_to_asn_service(mock_ip_to_asn_service())
    with use_client(client):
        yield client