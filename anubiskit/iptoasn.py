"""IP-to-ASN lookups: a prefix-caching wrapper and an in-memory test service."""

from __future__ import annotations

import ipaddress
import logging
import threading
from dataclasses import dataclass, field
from typing import Protocol

logger = logging.getLogger(__name__)

IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network

# Address ranges that are never publicly announced.
_UNANNOUNCED_PREFIXES = (
    "10.0.0.0/8",  # RFC 1918
    "172.16.0.0/12",  # RFC 1918
    "192.168.0.0/16",  # RFC 1918
    "127.0.0.0/8",  # Loopback
    "169.254.0.0/16",  # Link-local
    "100.64.0.0/10",  # CGNAT
    "192.0.0.0/24",  # Protocol assignments
    "192.0.2.0/24",  # TEST-NET-1
    "198.18.0.0/15",  # Benchmarking
    "198.51.100.0/24",  # TEST-NET-2
    "203.0.113.0/24",  # TEST-NET-3
    "240.0.0.0/4",  # Reserved
    "255.255.255.255/32",  # Broadcast
    "fc00::/7",  # Unique local address
    "fe80::/10",  # Link-local
    "::1/128",  # Loopback
    "::/128",  # Unspecified
    "100::/64",  # Discard-only
    "2001:db8::/32",  # Documentation
)


@dataclass(frozen=True)
class LookupResponse:
    """What is known about the network an IP address belongs to."""

    announced: bool = False
    as_number: int = 0
    cidr: tuple[str, ...] = field(default_factory=tuple)
    country_code: str = ""
    description: str = ""


class NotFoundError(LookupError):
    """The service has no record of the address."""


class IPToASNService(Protocol):
    def lookup(self, ip_address: str) -> LookupResponse: ...


def _parse_ip(ip_address: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address:
    try:
        return ipaddress.ip_address(ip_address)
    except ValueError as exc:
        raise ValueError(f"input is not an IP address: {exc}") from exc


class IPToASNWithCache:
    """Answers from a longest-prefix-match table, asking ``next_service`` on a miss."""

    def __init__(self, next_service: IPToASNService) -> None:
        self._next = next_service
        self._table: dict[IPNetwork, LookupResponse] = {}
        self._lock = threading.Lock()
        unannounced = LookupResponse(announced=False)
        for prefix in _UNANNOUNCED_PREFIXES:
            self._table[ipaddress.ip_network(prefix)] = unannounced

    def _match(self, addr) -> LookupResponse | None:
        with self._lock:
            matches = [
                (network.prefixlen, response)
                for network, response in self._table.items()
                if network.version == addr.version and addr in network
            ]
        if not matches:
            return None
        return max(matches, key=lambda item: item[0])[1]

    def lookup(self, ip_address: str) -> LookupResponse:
        """Return the response for ``ip_address``; raise ValueError if it is not an IP."""
        addr = _parse_ip(ip_address)

        cached = self._match(addr)
        if cached is not None:
            return cached

        response = self._next.lookup(ip_address)

        errors = []
        for cidr in response.cidr:
            try:
                network = ipaddress.ip_network(cidr, strict=False)
            except ValueError as exc:
                errors.append(str(exc))
                continue
            with self._lock:
                self._table[network] = response

        if errors:
            logger.error("errors parsing IP prefixes: %s", "; ".join(errors))

        return response


class MockIPToASNService:
    """An in-memory lookup service answering from a fixed table."""

    def __init__(self, responses: dict[str, LookupResponse] | None = None) -> None:
        self.responses: dict[str, LookupResponse] = dict(responses or {})

    def lookup(self, ip_address: str) -> LookupResponse:
        """Return the stored response; raise ValueError or NotFoundError otherwise."""
        _parse_ip(ip_address)
        try:
            return self.responses[ip_address]
        except KeyError:
            raise NotFoundError("IP address not found in mock") from None


def mock_ip_to_asn_service() -> MockIPToASNService:
    """Return a mock service preloaded with a few well-known answers."""
    cloudflare = LookupResponse(
        announced=True,
        as_number=13335,
        cidr=("1.1.1.0/24",),
        country_code="US",
        description="Cloudflare",
    )
    return MockIPToASNService(
        {
            "127.0.0.1": LookupResponse(announced=False),
            "::1": LookupResponse(announced=False),
            "10.10.10.10": cloudflare,
            "2.2.2.2": LookupResponse(
                announced=True,
                as_number=420,
                cidr=("2.2.2.0/24",),
                country_code="CA",
                description="test canada",
            ),
            "1.1.1.1": cloudflare,
        }
    )