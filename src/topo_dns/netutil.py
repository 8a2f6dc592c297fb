"""IPv4 helpers used for subnet grouping.

All functions are total: malformed input yields ``None`` or ``False``
instead of raising, so callers can feed them raw API data.
"""

from __future__ import annotations

from typing import Optional


def ip_to_int(ip: str) -> Optional[int]:
    """Parse a dotted-quad address into its 32-bit value."""
    if not isinstance(ip, str):
        return None
    parts = ip.strip().split(".")
    if len(parts) != 4:
        return None

    value = 0
    for part in parts:
        if not (part.isascii() and part.isdigit()):
            return None
        octet = int(part)
        if octet > 255:
            return None
        value = (value << 8) + octet
    return value


def ip_to_subnet(ip: str) -> Optional[str]:
    """Return the /24 block containing ``ip`` in CIDR notation."""
    if ip_to_int(ip) is None:
        return None
    a, b, c, _ = ip.strip().split(".")
    return f"{int(a)}.{int(b)}.{int(c)}.0/24"


def ip_in_subnet(ip: str, subnet: str) -> bool:
    """Check whether ``ip`` falls inside ``subnet`` (e.g. "10.0.4.0/24")."""
    if not isinstance(subnet, str) or "/" not in subnet:
        return False
    network, prefix_str = subnet.split("/", 1)
    try:
        prefix = int(prefix_str)
    except ValueError:
        return False
    if not 0 <= prefix <= 32:
        return False

    ip_num = ip_to_int(ip)
    net_num = ip_to_int(network)
    if ip_num is None or net_num is None:
        return False

    mask = (0xFFFFFFFF << (32 - prefix)) & 0xFFFFFFFF
    return (ip_num & mask) == (net_num & mask)
