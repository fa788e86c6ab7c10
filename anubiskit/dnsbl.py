"""DroneBL DNS blocklist lookups."""

from __future__ import annotations

import enum
import ipaddress
import socket

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address

DRONEBL_ZONE = "dnsbl.dronebl.org"


class DroneBLResponse(enum.IntEnum):
    """Listing categories returned by DroneBL in the last octet of the answer."""

    AllGood = 0
    IRCDrone = 3
    Bottler = 5
    UnknownSpambotOrDrone = 6
    DDOSDrone = 7
    SOCKSProxy = 8
    HTTPProxy = 9
    ProxyChain = 10
    OpenProxy = 11
    OpenDNSResolver = 12
    BruteForceAttackers = 13
    OpenWingateProxy = 14
    CompromisedRouter = 15
    AutoRootingWorms = 16
    AutoDetectedBotIP = 17
    Unknown = 255

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, int) and 0 <= value <= 255:
            member = int.__new__(cls, value)
            member._name_ = f"DroneBLResponse({value})"
            member._value_ = value
            return member
        return None

    def __str__(self) -> str:
        return self.name


def _as_ip(ip: IPAddress | str) -> IPAddress:
    return ip if isinstance(ip, (ipaddress.IPv4Address, ipaddress.IPv6Address)) else ipaddress.ip_address(ip)


def reverse4(ip: IPAddress | str) -> str:
    """Reverse the octets of an IPv4 address for a DNSBL query."""
    addr = _as_ip(ip)
    if isinstance(addr, ipaddress.IPv6Address):
        if addr.ipv4_mapped is None:
            raise ValueError(f"{addr} is not an IPv4 address")
        addr = addr.ipv4_mapped
    return ".".join(reversed(str(addr).split(".")))


def reverse6(ip: IPAddress | str) -> str:
    """Reverse the nibbles of an IPv6 address for a DNSBL query."""
    addr = _as_ip(ip)
    if isinstance(addr, ipaddress.IPv4Address):
        addr = ipaddress.IPv6Address(f"::ffff:{addr}")
    return ".".join(f"{byte & 0x0F:x}.{byte >> 4:x}" for byte in reversed(addr.packed))


def reverse(ip: IPAddress | str) -> str:
    """Return the DNSBL query form of an IPv4 or IPv6 address."""
    addr = _as_ip(ip)
    if isinstance(addr, ipaddress.IPv4Address) or addr.ipv4_mapped is not None:
        return reverse4(addr)
    return reverse6(addr)


_NOT_FOUND = {
    code
    for code in (getattr(socket, "EAI_NONAME", None), getattr(socket, "EAI_NODATA", None))
    if code is not None
}


def lookup(ip_str: str) -> DroneBLResponse:
    """Ask DroneBL whether ``ip_str`` is listed; raise ValueError for a non-address."""
    try:
        addr = ipaddress.ip_address(ip_str)
    except ValueError:
        raise ValueError("dnsbl: input is not an IP address") from None

    query = f"{reverse(addr)}.{DRONEBL_ZONE}"
    try:
        answers = socket.getaddrinfo(query, None, socket.AF_INET)
    except socket.gaierror as exc:
        if exc.errno in _NOT_FOUND:
            return DroneBLResponse.AllGood
        raise

    for *_, sockaddr in answers:
        return DroneBLResponse(int(sockaddr[0].split(".")[-1]))
    return DroneBLResponse.UnknownSpambotOrDrone