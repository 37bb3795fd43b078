"""Field discovery over DMP telemetry JSON.

Telemetry bodies differ per vendor and firmware: the same field can sit at any
depth, under differently cased keys, and either as a plain string or wrapped as
``{"value": "..."}``. Everything here is a pure function over the parsed JSON
(``dict``/``list``/scalars) so the matching rules can be tested in isolation.

Traversal is pre-order depth-first: object properties in their given order,
descending into each value before moving to the next sibling, arrays item by
item. The first match wins.
"""

import ipaddress
import re
from typing import Any, Optional

_MISSING = object()

_MAC_RE = re.compile(r"^[0-9A-Fa-f]{2}([:-]?)(?:[0-9A-Fa-f]{2}\1){4}[0-9A-Fa-f]{2}$")


def _same_key(a: Any, b: str) -> bool:
    return isinstance(a, str) and a.casefold() == b.casefold()


def _subtree(node: Any, key: str) -> Any:
    if isinstance(node, dict):
        for name, value in node.items():
            if _same_key(name, key):
                return value
            hit = _subtree(value, key)
            if hit is not _MISSING:
                return hit
    elif isinstance(node, list):
        for item in node:
            hit = _subtree(item, key)
            if hit is not _MISSING:
                return hit
    return _MISSING


def find_subtree(node: Any, key: str) -> Any:
    """Return the value bound to the first occurrence of ``key``, or None."""
    hit = _subtree(node, key)
    return None if hit is _MISSING else hit


def _unwrap(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        inner = value.get("value")
        if isinstance(inner, str):
            return inner
        return None
    if isinstance(value, str):
        return value
    return None


def find_leaf(node: Any, key: str) -> Optional[str]:
    """Return the first non-blank string bound to ``key``.

    A bound ``{"value": "..."}`` object is unwrapped once. Blank strings and
    non-string values do not stop the search.
    """
    if isinstance(node, dict):
        for name, value in node.items():
            if _same_key(name, key):
                candidate = _unwrap(value)
                if candidate is not None and candidate.strip():
                    return candidate
            sub = find_leaf(value, key)
            if sub:
                return sub
    elif isinstance(node, list):
        for item in node:
            sub = find_leaf(item, key)
            if sub:
                return sub
    return None


def strip_port(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    s = value.strip()
    idx = s.find(":")
    return s[:idx] if idx > 0 else s


def looks_like_ipv4(value: Optional[str]) -> bool:
    candidate = strip_port(value)
    if not candidate:
        return False
    try:
        ipaddress.IPv4Address(candidate)
    except ValueError:
        return False
    return True


def looks_like_mac(value: Optional[str]) -> bool:
    if not value or not value.strip():
        return False
    return bool(_MAC_RE.match(value.strip()))


def _ip_under(root: Any, scope: Optional[str]) -> Optional[str]:
    node = root if scope is None else find_subtree(root, scope)
    value = find_leaf(node, "IPv4Address")
    return strip_port(value) if looks_like_ipv4(value) else None


def find_ipv4_address(root: Any) -> Optional[str]:
    """IPv4 address by precedence EthernetWAN, Mobile, LAN, then anywhere."""
    for scope in ("EthernetWAN", "Mobile", "LAN", None):
        ip = _ip_under(root, scope)
        if ip:
            return ip
    return None


def find_primary_ipv4_address(root: Any) -> Optional[str]:
    for scope in ("EthernetWAN", "Mobile"):
        ip = _ip_under(root, scope)
        if ip:
            return ip
    return None


def find_lan_ipv4_address(root: Any) -> Optional[str]:
    return _ip_under(root, "LAN")


def find_mac_address(root: Any) -> Optional[str]:
    """WAN MAC by precedence EthernetWAN, then anywhere. Returned trimmed, not cleaned."""
    for scope in ("EthernetWAN", None):
        node = root if scope is None else find_subtree(root, scope)
        mac = find_leaf(node, "MACAddress")
        if looks_like_mac(mac):
            return mac.strip()
    return None
