import asyncio
import contextlib
import ipaddress
import platform
import re
import shutil
import socket
import time
from typing import Optional, Dict, Iterable, Tuple

from ..config import Config, ReachabilityResult
from .logging import get_logger

logger = get_logger(__name__)

_RTT_RE = re.compile(r"time[=<]\s*([0-9.]+)\s*ms", re.IGNORECASE)


def port_open(host: str, port: int, timeout: float = 2.0) -> bool:
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.settimeout(timeout)
        result = sock.connect_ex((host, port))
        sock.close()
        return result == 0
    except (socket.gaierror, socket.error):
        return False


def discover_services(ip: str, timeout: float = 2.0) -> Dict[str, bool]:
    """Probe the SSH ports a CPE may expose.

    Includes the device management port (8822) and standard SSH (22).
    """
    return {
        f"ssh:{Config.DEFAULT_SSH_PORT}": port_open(ip, Config.DEFAULT_SSH_PORT, timeout),
        f"ssh:{Config.FALLBACK_SSH_PORT}": port_open(ip, Config.FALLBACK_SSH_PORT, timeout),
    }


def is_private_address(ip: str) -> bool:
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return False
    # 100.64.0.0/10 is where mobile carriers put CGNAT subscribers
    return addr.is_private or addr in ipaddress.ip_network("100.64.0.0/10")


def _ping_command(host: str, timeout: float) -> list:
    system = platform.system()
    if system == "Windows":
        return ["ping", "-n", "1", "-w", str(int(timeout * 1000)), host]
    if system == "Darwin":
        return ["ping", "-c", "1", "-W", str(int(timeout * 1000)), host]
    # iputils accepts fractional seconds for -W
    return ["ping", "-c", "1", "-W", f"{timeout:g}", host]


async def ping(host: str, timeout: float = Config.ONLINE_PING_TIMEOUT) -> Tuple[bool, Optional[float]]:
    """Send one ICMP echo through the system ``ping`` binary.

    Returns ``(ok, rtt_ms)``. Never raises: a missing binary, a timeout or an
    unresolvable host all come back as ``(False, None)``.
    """
    if not shutil.which("ping"):
        logger.debug("ping binary not available")
        return False, None

    start = time.perf_counter()
    proc = None
    try:
        proc = await asyncio.create_subprocess_exec(
            *_ping_command(host, timeout),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout + 1.0)
    except asyncio.TimeoutError:
        logger.debug(f"ping {host} timed out after {timeout}s")
        if proc is not None and proc.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
        return False, None
    except OSError as e:
        logger.debug(f"ping {host} failed: {e}")
        return False, None

    if proc.returncode != 0:
        return False, None

    m = _RTT_RE.search(stdout.decode("utf-8", errors="ignore"))
    rtt = float(m.group(1)) if m else (time.perf_counter() - start) * 1000.0
    return True, rtt


def _discard_connect(task: "asyncio.Task") -> None:
    if task.cancelled() or task.exception() is not None:
        return
    _, writer = task.result()
    writer.close()


async def tcp_connect(host: str, port: int, timeout: float = Config.TCP_CONNECT_TIMEOUT) -> bool:
    """Race a TCP connect against a timer; True only if the connect wins.

    A connect that is still pending when the timer fires is cancelled, and if
    it manages to complete anyway its socket is closed on completion.
    """
    connect = asyncio.ensure_future(asyncio.open_connection(host, port))
    timer = asyncio.ensure_future(asyncio.sleep(timeout))
    try:
        done, _ = await asyncio.wait({connect, timer}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        timer.cancel()

    if connect not in done:
        connect.add_done_callback(_discard_connect)
        connect.cancel()
        logger.debug(f"TCP connect {host}:{port} timed out after {timeout}s")
        return False

    try:
        _, writer = connect.result()
    except (OSError, ValueError) as e:
        logger.debug(f"TCP connect {host}:{port} failed: {e}")
        return False

    writer.close()
    with contextlib.suppress(Exception):
        await writer.wait_closed()
    return True


async def is_reachable(host: str, port: int) -> bool:
    # Advisory only: the echo result is discarded, the TCP connect decides.
    try:
        await ping(host, Config.PROBE_PING_TIMEOUT)
    except Exception as e:
        logger.debug(f"advisory ping to {host} raised: {e}")
    return await tcp_connect(host, port, Config.TCP_CONNECT_TIMEOUT)


async def probe(ip: str, ports: Optional[Iterable[int]] = None) -> ReachabilityResult:
    candidates = list(ports) if ports is not None else Config.candidate_ports()
    for port in candidates:
        if await is_reachable(ip, port):
            logger.debug(f"{ip}:{port} is reachable")
            return ReachabilityResult(reachable=True, ip=ip, port=port)
        logger.debug(f"{ip}:{port} did not answer")
    return ReachabilityResult(reachable=False, ip=ip, port=candidates[0] if candidates else Config.DEFAULT_SSH_PORT)
