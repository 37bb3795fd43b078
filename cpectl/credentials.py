import re
from typing import Optional

from .config import Config, Credential

_NON_HEX = re.compile(r"[^0-9A-Fa-f]")
_CLEAN_MAC = re.compile(r"^[0-9A-F]{12}$")


def clean_wan_mac(raw: Optional[str]) -> str:
    """Reduce a raw MAC string to at most 12 uppercase hex characters.

    Short input stays short; callers that need a full address must check the
    length themselves (see ``is_valid_clean_mac``).
    """
    hex_only = _NON_HEX.sub("", raw or "")
    return hex_only[:12].upper()


def is_valid_clean_mac(clean: str) -> bool:
    return bool(_CLEAN_MAC.match(clean or ""))


def derive_password(client_id: str, clean_mac: str) -> str:
    return (client_id or "").strip() + "!" + clean_mac


def build_credential(client_id: str, wan_mac_raw: Optional[str]) -> Credential:
    return Credential(
        password=derive_password(client_id, clean_wan_mac(wan_mac_raw)),
        username=Config.DEFAULT_SSH_USER,
    )


def mask_secret(value: str) -> str:
    if not value:
        return value
    if len(value) <= 4:
        return "****"
    return value[:2] + "***" + value[-2:]
