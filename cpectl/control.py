import asyncio
import contextlib
import time
from enum import Enum
from typing import List, Optional, Tuple

from .config import Config, Credential, DeviceEndpoint, OnlineCheckResult, StepRecord
from .credentials import build_credential, clean_wan_mac, derive_password, is_valid_clean_mac
from .drivers.dmp import DmpClient
from .drivers.ssh import RemoteShell, ShellFactory, paramiko_shell_factory
from .errors import (
    ApiRejected,
    AuthFailure,
    CpectlError,
    CredentialInvalid,
    OperationResult,
    RemoteCommandFailure,
    ResolutionFailure,
    SessionFailure,
    UnreachableEndpoint,
)
from .resolver import DeviceResolver
from .utils.logging import get_logger
from .utils.network import is_private_address, ping, probe

logger = get_logger(__name__)


class RestartState(Enum):
    RESOLVE = "resolve"
    VALIDATE_CREDENTIAL = "validate_credential"
    SELECT_ENDPOINT = "select_endpoint"
    CONNECT = "connect"
    STOP = "stop"
    START = "start"
    STATUS = "status"
    DONE = "done"
    ERROR = "error"


class _RestartRun:
    def __init__(self, serial_number: str):
        self.serial_number = serial_number
        self.state = RestartState.RESOLVE
        self.log: List[str] = []
        self.steps: List[StepRecord] = []

    def advance(self, state: RestartState):
        logger.debug(f"{self.serial_number}: {self.state.value} -> {state.value}")
        self.state = state


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _missing_fields(ip: Optional[str], mac: Optional[str]) -> str:
    missing = []
    if not ip:
        missing.append("IP")
    if not mac:
        missing.append("WAN MAC")
    return "/".join(missing)


class DeviceControlService:
    """Operations a technician runs against one CPE.

    Every public coroutine catches failures at its own boundary and returns an
    ``OperationResult`` (or a small record), so callers never see network
    exceptions.
    """

    def __init__(
        self,
        dmp: DmpClient,
        shell_factory: ShellFactory = paramiko_shell_factory,
        resolver: Optional[DeviceResolver] = None,
    ):
        self.dmp = dmp
        self.shell_factory = shell_factory
        self.resolver = resolver or DeviceResolver(dmp)

    @contextlib.asynccontextmanager
    async def _session(self, label: str, ip: str, port: int, username: str, password: str):
        shell: RemoteShell = self.shell_factory(ip, port, username, password)
        try:
            try:
                await asyncio.to_thread(shell.connect)
            except Exception as e:
                raise SessionFailure(f"Failed to connect to {label} ({ip}:{port}): {e}") from e
            if not shell.is_connected:
                raise SessionFailure(f"Failed to connect to {label} ({ip}:{port}).")
            yield shell
        finally:
            await self._release(shell, ip, port)

    async def _release(self, shell: RemoteShell, ip: str, port: int):
        # Teardown errors must not replace the error that ended the session.
        for name in ("disconnect", "close"):
            try:
                await asyncio.to_thread(getattr(shell, name))
            except Exception as e:
                logger.debug(f"{name} for {ip}:{port} raised: {e}")

    async def _run_step(self, shell: RemoteShell, name: str, command: str) -> StepRecord:
        start = time.perf_counter()
        try:
            output = await asyncio.to_thread(shell.run_command, command)
        except Exception as e:
            raise RemoteCommandFailure(f"{name} could not be executed: {e}") from e
        record = StepRecord(name=name, command=command, output=output, elapsed_ms=_elapsed_ms(start))
        logger.debug(f"{name} finished in {record.elapsed_ms} ms")
        return record

    async def _resolve_endpoint(self, serial_number: str) -> DeviceEndpoint:
        ip, mac = await self.resolver.resolve_partial(serial_number)
        if not ip or not mac:
            raise ResolutionFailure(
                f"Failed to retrieve device info for {serial_number} "
                f"({_missing_fields(ip, mac)} not found). Choose 'getinfo' to debug."
            )
        return DeviceEndpoint(ip=ip, wan_mac_raw=mac)

    async def index_restart(
        self, serial_number: str, client_id: str, ip_override: Optional[str] = None
    ) -> OperationResult:
        """Resolve, validate, probe, connect, then stop/start/status the ngacs client."""
        run = _RestartRun(serial_number)
        try:
            run.advance(RestartState.RESOLVE)
            endpoint = await self._resolve_endpoint(serial_number)

            run.advance(RestartState.VALIDATE_CREDENTIAL)
            clean_mac = clean_wan_mac(endpoint.wan_mac_raw)
            if not is_valid_clean_mac(clean_mac):
                raise CredentialInvalid(
                    "WAN MAC missing/invalid from DMP response, cannot compute SSH password "
                    f"(expected 12 hex). Got: '{endpoint.wan_mac_raw}'"
                )
            password = derive_password(client_id, clean_mac)

            run.advance(RestartState.SELECT_ENDPOINT)
            candidate = ip_override or endpoint.ip
            reach = await probe(candidate)
            if not reach.reachable:
                run.log.extend([
                    f"- Candidate IP from DMP: {candidate}",
                    f"- Tried ports: {', '.join(str(p) for p in Config.candidate_ports())}",
                    "Tip: If this is a mobile/private IP, you may need the Ethernet/LAN IP or VPN.",
                ])
                if is_private_address(candidate):
                    run.log.append(f"Note: {candidate} is a private or carrier-NAT address.")
                raise UnreachableEndpoint("Could not reach device for SSH.")

            run.advance(RestartState.CONNECT)
            run.log.append(
                f"Connecting to {serial_number} at {reach.ip}:{reach.port} as {Config.DEFAULT_SSH_USER}"
            )
            run.log.append(f"Using WAN MAC (clean): {clean_mac}")

            async with self._session(
                serial_number, reach.ip, reach.port, Config.DEFAULT_SSH_USER, password
            ) as shell:
                run.advance(RestartState.STOP)
                run.steps.append(await self._run_step(shell, "🔚 ngacs stop", Config.NGACS_STOP_CMD))

                run.advance(RestartState.START)
                if not shell.is_connected:
                    raise SessionFailure("Session dropped after ngacs stop; ngacs start was not run.")
                run.steps.append(await self._run_step(shell, "▶️ ngacs start", Config.NGACS_START_CMD))

                run.advance(RestartState.STATUS)
                try:
                    run.steps.append(
                        await self._run_step(shell, "📊 ngacs status (via ps)", Config.NGACS_STATUS_CMD)
                    )
                except RemoteCommandFailure as e:
                    logger.warning(f"{serial_number}: status check skipped: {e}")
                    run.log.append(f"📊 ngacs status unavailable (best effort): {e}")

            run.advance(RestartState.DONE)
            return OperationResult(
                ok=True,
                summary=f"Index restart completed for {serial_number}.",
                log=run.log,
                steps=run.steps,
            )

        except CpectlError as e:
            failed_at = run.state.value
            run.advance(RestartState.ERROR)
            logger.error(f"{serial_number}: index restart failed at {failed_at}: {e}")
            return OperationResult.failure(e, str(e), run.log, run.steps, failed_at=failed_at)
        except Exception as e:
            failed_at = run.state.value
            run.advance(RestartState.ERROR)
            logger.error(f"{serial_number}: index restart failed unexpectedly at {failed_at}: {e}")
            return OperationResult.failure(
                e,
                f"Index restart failed for {serial_number}.\nError: {e}",
                run.log,
                run.steps,
                failed_at=failed_at,
            )

    async def _single_command(
        self,
        serial_number: str,
        ip_address: str,
        port: int,
        username: str,
        password: str,
        verb: str,
        command: str,
        step_name: str,
    ) -> OperationResult:
        log: List[str] = []
        steps: List[StepRecord] = []
        try:
            async with self._session(serial_number, ip_address, port, username, password) as shell:
                log.append(f"Connected to {serial_number} ({ip_address}:{port})")
                steps.append(await self._run_step(shell, step_name, command))
            return OperationResult(
                ok=True,
                summary=f"ngacs {verb} completed for {serial_number}.",
                log=log,
                steps=steps,
            )
        except CpectlError as e:
            return OperationResult.failure(e, str(e), log, steps)
        except Exception as e:
            return OperationResult.failure(
                e, f"ngacs {verb} failed for {serial_number}.\nError: {e}", log, steps
            )

    async def stop_only(
        self, serial_number: str, ip_address: str, port: int, username: str, password: str
    ) -> OperationResult:
        # No MAC length check here: the caller already holds a credential.
        return await self._single_command(
            serial_number, ip_address, port, username, password,
            "stop", Config.NGACS_STOP_CMD, "🔚 ngacs stop",
        )

    async def start_only(
        self, serial_number: str, ip_address: str, port: int, username: str, password: str
    ) -> OperationResult:
        return await self._single_command(
            serial_number, ip_address, port, username, password,
            "start", Config.NGACS_START_CMD, "▶️ ngacs start",
        )

    async def reboot(self, serial_number: str) -> OperationResult:
        token = None
        try:
            token = await asyncio.to_thread(self.dmp.login)
        except Exception as e:
            logger.error(f"DMP login raised: {e}")
        if not token:
            return OperationResult.failure(
                AuthFailure(), "Failed to obtain authorization token."
            )

        start = time.perf_counter()
        try:
            response = await asyncio.to_thread(self.dmp.reboot, token, serial_number)
        except Exception as e:
            return OperationResult.failure(
                e,
                f"Reboot failed for {serial_number}.\nError: {e}",
                [f"⏱️ Time: {_elapsed_ms(start)} ms"],
            )
        elapsed = _elapsed_ms(start)

        if not response.ok:
            return OperationResult.failure(
                ApiRejected(),
                f"Reboot failed for {serial_number}: {response.status_code} {response.reason} - {response.body}",
                [f"⏱️ Time: {elapsed} ms"],
            )
        return OperationResult(
            ok=True,
            summary=f"Reboot triggered for {serial_number}: {response.status_code} {response.reason}",
            log=[f"⏱️ Time: {elapsed} ms"],
        )

    async def restart_and_reboot(self, serial_number: str, client_id: str) -> Tuple[OperationResult, OperationResult]:
        restart = await self.index_restart(serial_number, client_id)
        reboot = await self.reboot(serial_number)
        return restart, reboot

    async def ping_device(self, ip_address: str) -> OperationResult:
        ok, rtt = await ping(ip_address, Config.ONLINE_PING_TIMEOUT)
        if ok:
            rtt_text = f"{rtt:.0f}ms" if rtt is not None else "n/a"
            return OperationResult(
                ok=True, summary=f"Ping to {ip_address} successful. Roundtrip time: {rtt_text}"
            )
        return OperationResult.failure(
            UnreachableEndpoint(), f"Ping to {ip_address} failed."
        )

    async def check_online(self, ip_address: str, port: int, username: str, password: str) -> OnlineCheckResult:
        result = OnlineCheckResult()
        ping_ok, _ = await ping(ip_address, Config.ONLINE_PING_TIMEOUT)
        if ping_ok:
            result.success = result.online = result.dmp_online = True
            return result

        try:
            async with self._session(ip_address, ip_address, port, username, password):
                result.success = result.online = result.dmp_online = True
        except Exception as e:
            logger.warning(f"SSH fallback failed: {e}")
        return result

    async def resolve_credentials(self, serial_number: str, client_id: str) -> Tuple[DeviceEndpoint, Credential]:
        """Resolve the device and derive its credential from the raw MAC.

        Unlike ``index_restart`` this only requires a non-empty MAC; it is the
        lookup the standalone stop/start/check paths run before connecting.
        """
        endpoint = await self.resolver.resolve(serial_number)
        if endpoint is None or not endpoint.wan_mac_raw.strip():
            raise ResolutionFailure("Could not get device IP/WAN MAC. Use 'getinfo' to debug.")
        return endpoint, build_credential(client_id, endpoint.wan_mac_raw)

    async def get_info(self, serial_number: str) -> OperationResult:
        try:
            ip, mac = await self.resolver.resolve_partial(serial_number)
        except CpectlError as e:
            return OperationResult.failure(e, str(e))
        except Exception as e:
            return OperationResult.failure(e, f"getinfo failed for {serial_number}.\nError: {e}")

        if not ip and not mac:
            return OperationResult.failure(ResolutionFailure(), "Could not retrieve any network info.")

        clean = clean_wan_mac(mac)
        log = [
            f"Candidate IP from DMP: {ip or '(missing)'}",
            f"WAN MAC (raw) from DMP: {mac or '(missing)'}",
            f"WAN MAC (clean 12-hex): {clean or '(missing)'}",
        ]
        if mac and not is_valid_clean_mac(clean):
            log.append(f"Warning: clean WAN MAC has {len(clean)} hex characters, expected 12.")
        log.append("Note: Password = ClientID + '!' + CLEAN WAN MAC.")

        if ip and mac:
            return OperationResult(ok=True, summary=f"Network info for {serial_number}", log=log)
        return OperationResult.failure(
            ResolutionFailure(),
            f"Partial network info for {serial_number} ({_missing_fields(ip, mac)} not found)",
            log,
        )

    async def get_details(self, serial_number: str) -> OperationResult:
        try:
            details = await self.resolver.get_details(serial_number)
        except CpectlError as e:
            return OperationResult.failure(e, str(e))
        except Exception as e:
            return OperationResult.failure(e, f"details failed for {serial_number}.\nError: {e}")

        if details is None:
            return OperationResult.failure(ResolutionFailure(), "Could not retrieve any network info.")

        return OperationResult(
            ok=True,
            summary=f"Device details for {serial_number}",
            log=[
                f"Primary IP (WAN/Mobile): {details.primary_ip or '(missing)'} "
                f"[{details.primary_runtime_ms} ms]",
                f"Secondary IP (LAN): {details.secondary_ip or '(missing)'} "
                f"[{details.secondary_runtime_ms} ms]",
                f"WAN MAC (raw): {details.wan_mac_raw or '(missing)'}",
            ],
        )
