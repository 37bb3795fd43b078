import asyncio
import socket
from typing import Callable, Optional, Protocol, runtime_checkable

import paramiko

from ..config import Config
from ..utils.logging import get_logger

logger = get_logger(__name__)


@runtime_checkable
class RemoteShell(Protocol):
    """Capabilities the orchestrator needs from a device shell session."""

    @property
    def is_connected(self) -> bool: ...

    def connect(self) -> None: ...

    def disconnect(self) -> None: ...

    def run_command(self, command: str) -> str: ...

    def close(self) -> None: ...


ShellFactory = Callable[[str, int, str, str], RemoteShell]


class ParamikoShell:
    def __init__(self, host: str, port: int, username: str, password: str, timeout: float = Config.SSH_TIMEOUT):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.timeout = timeout
        self._client: Optional[paramiko.SSHClient] = None

    def connect(self) -> None:
        logger.debug(
            f"SSH connecting to {self.host}:{self.port} as {self.username} (pass_len: {len(self.password)})"
        )
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                self.host,
                port=self.port,
                username=self.username,
                password=self.password,
                timeout=self.timeout,
                banner_timeout=self.timeout,
                auth_timeout=self.timeout,
                allow_agent=False,
                look_for_keys=False,
            )
        except (paramiko.SSHException, socket.error):
            client.close()
            raise
        self._client = client

    @property
    def is_connected(self) -> bool:
        if self._client is None:
            return False
        transport = self._client.get_transport()
        return bool(transport and transport.is_active())

    def run_command(self, command: str) -> str:
        if self._client is None:
            raise paramiko.SSHException("SSH session is not connected")
        logger.debug(f"SSH exec_command: {command}")
        _, stdout, stderr = self._client.exec_command(command, timeout=self.timeout)
        out = stdout.read().decode("utf-8", errors="ignore")
        err = stderr.read().decode("utf-8", errors="ignore")
        rc = stdout.channel.recv_exit_status()
        if err.strip():
            logger.debug(f"'{command}' exited {rc}, stderr: {err.strip()}")
        return out

    def disconnect(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def close(self) -> None:
        self.disconnect()

    def __enter__(self) -> "ParamikoShell":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def paramiko_shell_factory(host: str, port: int, username: str, password: str) -> RemoteShell:
    return ParamikoShell(host, port, username, password)


class SshCommandExecutor:
    """One-shot command runner: connect, run a single command, disconnect."""

    def __init__(self, client_factory: Callable[[str], RemoteShell]):
        self._client_factory = client_factory

    async def _run_once(self, device_ip: str, command: str) -> str:
        client = self._client_factory(device_ip)
        try:
            await asyncio.to_thread(client.connect)
            result = await asyncio.to_thread(client.run_command, command)
            await asyncio.to_thread(client.disconnect)
            return result
        finally:
            await asyncio.to_thread(client.close)

    async def execute_command(self, device_ip: str, command: str) -> str:
        return await self._run_once(device_ip, command)

    async def get_command_status(self, device_ip: str, status_command: str) -> str:
        return await self._run_once(device_ip, status_command)
