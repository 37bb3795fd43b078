from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Tuple
from pathlib import Path
import os
from datetime import datetime

from dotenv import load_dotenv


@dataclass(frozen=True)
class DeviceEndpoint:
    ip: str
    wan_mac_raw: str


@dataclass(frozen=True)
class Credential:
    password: str
    username: str = "superadmin"


@dataclass(frozen=True)
class ReachabilityResult:
    reachable: bool
    ip: str
    port: int


@dataclass
class OnlineCheckResult:
    success: bool = False
    online: bool = False
    dmp_online: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "online": self.online,
            "dmp_online": self.dmp_online,
        }


@dataclass(frozen=True)
class DeviceDetails:
    """Network identity split into primary (WAN/Mobile) and secondary (LAN) addresses."""

    primary_ip: Optional[str]
    secondary_ip: Optional[str]
    wan_mac_raw: str = ""
    primary_runtime_ms: int = 0
    secondary_runtime_ms: int = 0


@dataclass
class StepRecord:
    name: str
    command: str
    output: str
    elapsed_ms: int
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "command": self.command,
            "output": self.output,
            "elapsed_ms": self.elapsed_ms,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class DmpCredentials:
    email: str
    password: str
    base_url: str

    @classmethod
    def from_env(cls) -> "DmpCredentials":
        load_dotenv()
        return cls(
            email=os.environ.get("CPECTL_DMP_EMAIL", ""),
            password=os.environ.get("CPECTL_DMP_PASSWORD", ""),
            base_url=os.environ.get("CPECTL_DMP_BASE_URL", Config.DMP_BASE_URL).rstrip("/"),
        )


class Config:
    BASE_DIR = Path.home() / ".cpectl"
    LOGS_DIR = BASE_DIR / "logs"

    DMP_BASE_URL = "https://api.dataremote.com"
    DMP_PARAMETER_TIMEOUT = 60

    TELEMETRY_PATHS: Tuple[str, ...] = (
        "+Status.Network",
        "+Status.Network.EthernetWAN",
        "+Status.Network.Mobile",
        "+Status.Network.LAN",
    )

    DEFAULT_SSH_PORT = 8822
    FALLBACK_SSH_PORT = 22
    DEFAULT_SSH_USER = "superadmin"

    NGACS_STOP_CMD = "/etc/init.d/ngacsclient stop"
    NGACS_START_CMD = "/etc/init.d/ngacsclient start"
    NGACS_STATUS_CMD = "ps | grep ngacs"

    PROBE_PING_TIMEOUT = 1.5
    ONLINE_PING_TIMEOUT = 3.0
    TCP_CONNECT_TIMEOUT = 2.0
    SSH_TIMEOUT = 10
    HTTP_TIMEOUT = 30

    @classmethod
    def candidate_ports(cls) -> List[int]:
        return [cls.DEFAULT_SSH_PORT, cls.FALLBACK_SSH_PORT]

    @classmethod
    def init_directories(cls):
        for dir_path in [cls.BASE_DIR, cls.LOGS_DIR]:
            dir_path.mkdir(parents=True, exist_ok=True)
