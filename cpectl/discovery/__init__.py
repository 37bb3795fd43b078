from .extractor import (
    find_subtree,
    find_leaf,
    find_ipv4_address,
    find_lan_ipv4_address,
    find_mac_address,
    find_primary_ipv4_address,
    looks_like_ipv4,
    looks_like_mac,
    strip_port,
)

__all__ = [
    "find_subtree",
    "find_leaf",
    "find_ipv4_address",
    "find_lan_ipv4_address",
    "find_mac_address",
    "find_primary_ipv4_address",
    "looks_like_ipv4",
    "looks_like_mac",
    "strip_port",
]
