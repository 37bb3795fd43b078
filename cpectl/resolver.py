import asyncio
import time
from typing import Optional, Sequence, Tuple

from .config import Config, DeviceDetails, DeviceEndpoint
from .discovery import (
    find_ipv4_address,
    find_lan_ipv4_address,
    find_mac_address,
    find_primary_ipv4_address,
)
from .drivers.dmp import DmpClient
from .errors import AuthFailure
from .utils.logging import get_logger

logger = get_logger(__name__)


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


class DeviceResolver:
    """Finds a device's IP and WAN MAC by walking DMP telemetry paths in order.

    Each field keeps the first value found; later paths never overwrite it.
    Paths are queried one at a time because each response decides whether the
    next query is needed at all.
    """

    def __init__(self, dmp: DmpClient, paths: Sequence[str] = Config.TELEMETRY_PATHS):
        self.dmp = dmp
        self.paths = tuple(paths)

    async def _token(self) -> str:
        token = await asyncio.to_thread(self.dmp.login)
        if not token:
            raise AuthFailure("Could not obtain token for DMP parameter call.")
        return token

    async def _query(self, token: str, serial_number: str, path: str):
        ok, root = await asyncio.to_thread(self.dmp.get_parameter, token, serial_number, path)
        if not ok or root is None:
            logger.debug(f"{serial_number}: no usable data at {path}")
            return None
        return root

    async def resolve_partial(self, serial_number: str) -> Tuple[Optional[str], Optional[str]]:
        """Return ``(ip, wan_mac_raw)``; either may be None when never found."""
        token = await self._token()
        found_ip: Optional[str] = None
        found_mac: Optional[str] = None

        for path in self.paths:
            root = await self._query(token, serial_number, path)
            if root is None:
                continue

            found_mac = found_mac or find_mac_address(root)
            found_ip = found_ip or find_ipv4_address(root)

            if found_ip and found_mac:
                logger.debug(f"{serial_number}: IP and WAN MAC found at {path}")
                break

        return found_ip, found_mac

    async def resolve(self, serial_number: str) -> Optional[DeviceEndpoint]:
        ip, mac = await self.resolve_partial(serial_number)
        if ip and mac:
            return DeviceEndpoint(ip=ip, wan_mac_raw=mac)

        logger.error(
            f"Could not extract IP/WAN MAC from DMP data. IP:'{ip or ''}', WAN:'{mac or ''}'"
        )
        return None

    async def get_details(self, serial_number: str) -> Optional[DeviceDetails]:
        token = await self._token()
        start = time.perf_counter()
        primary_ip = secondary_ip = wan_mac = None
        primary_ms = secondary_ms = 0

        for path in self.paths:
            root = await self._query(token, serial_number, path)
            if root is None:
                continue

            wan_mac = wan_mac or find_mac_address(root)
            if not primary_ip:
                primary_ip = find_primary_ipv4_address(root)
                if primary_ip:
                    primary_ms = _elapsed_ms(start)
            if not secondary_ip:
                secondary_ip = find_lan_ipv4_address(root)
                if secondary_ip:
                    secondary_ms = _elapsed_ms(start)

            if primary_ip and secondary_ip and wan_mac:
                break

        if not primary_ip and not secondary_ip:
            return None

        return DeviceDetails(
            primary_ip=primary_ip,
            secondary_ip=secondary_ip,
            wan_mac_raw=wan_mac or "",
            primary_runtime_ms=primary_ms,
            secondary_runtime_ms=secondary_ms,
        )
