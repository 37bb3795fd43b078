import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from cpectl.config import DeviceEndpoint, ReachabilityResult
from cpectl.control import DeviceControlService, RestartState
from cpectl.drivers.dmp import DmpClient, RebootResponse
from cpectl.errors import ErrorKind, ResolutionFailure


class FakeShell:
    def __init__(self, host, port, username, password, outputs=None, connect_ok=True,
                 drop_after=None, fail_on=None, close_error=None):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.outputs = outputs or {}
        self.connect_ok = connect_ok
        self.drop_after = drop_after
        self.fail_on = fail_on
        self.close_error = close_error
        self.commands = []
        self.connected = False
        self.closed = False
        self.disconnected = False

    @property
    def is_connected(self):
        return self.connected

    def connect(self):
        self.connected = self.connect_ok

    def disconnect(self):
        self.disconnected = True
        self.connected = False

    def close(self):
        self.closed = True
        if self.close_error:
            raise self.close_error

    def run_command(self, command):
        self.commands.append(command)
        if self.fail_on and self.fail_on in command:
            raise OSError("channel closed")
        if self.drop_after and self.drop_after in command:
            self.connected = False
        return self.outputs.get(command, f"ran {command}")


class ShellRecorder:
    def __init__(self, **shell_kwargs):
        self.shell_kwargs = shell_kwargs
        self.shells = []

    def __call__(self, host, port, username, password):
        shell = FakeShell(host, port, username, password, **self.shell_kwargs)
        self.shells.append(shell)
        return shell


def _dmp(responses=None, token="tok"):
    responses = responses or {}
    dmp = MagicMock(spec=DmpClient)
    dmp.login.return_value = token
    dmp.get_parameter.side_effect = lambda tok, serial, path: (
        (True, responses[path]) if path in responses else (False, None)
    )
    return dmp


GOOD_TELEMETRY = {
    "+Status.Network": {"EthernetWAN": {"IPv4Address": "10.0.0.5", "MACAddress": "aa:bb:cc:dd:ee:ff"}},
}


class TestIndexRestart:

    @pytest.mark.asyncio
    @patch("cpectl.control.probe")
    async def test_end_to_end_success(self, mock_probe):
        mock_probe.return_value = ReachabilityResult(True, "10.0.0.5", 8822)
        recorder = ShellRecorder()
        service = DeviceControlService(_dmp(GOOD_TELEMETRY), shell_factory=recorder)

        result = await service.index_restart("SN123", "client1")

        assert result.ok is True
        assert result.error_kind is None
        mock_probe.assert_awaited_once_with("10.0.0.5")
        shell = recorder.shells[0]
        assert (shell.host, shell.port) == ("10.0.0.5", 8822)
        assert shell.username == "superadmin"
        assert shell.password == "client1!AABBCCDDEEFF"
        assert shell.commands == [
            "/etc/init.d/ngacsclient stop",
            "/etc/init.d/ngacsclient start",
            "ps | grep ngacs",
        ]
        assert shell.disconnected and shell.closed
        text = result.display()
        assert text.startswith("✅ Index restart completed for SN123.")
        assert "Using WAN MAC (clean): AABBCCDDEEFF" in text
        assert "ngacs stop completed in" in text
        assert "ngacs start completed in" in text
        assert [s.name for s in result.steps][:2] == ["🔚 ngacs stop", "▶️ ngacs start"]

    @pytest.mark.asyncio
    @patch("cpectl.control.probe")
    async def test_short_mac_fails_before_probe(self, mock_probe):
        # The extractor would reject "aa:bb:cc:dd", so feed it straight from the resolver
        service = DeviceControlService(_dmp(), shell_factory=ShellRecorder())
        service.resolver = MagicMock()
        service.resolver.resolve_partial = AsyncMock(return_value=("10.0.0.5", "aa:bb:cc:dd"))

        result = await service.index_restart("SN123", "client1")

        assert result.ok is False
        assert result.error_kind == ErrorKind.CREDENTIAL_INVALID
        assert result.failed_at == RestartState.VALIDATE_CREDENTIAL.value
        assert "expected 12 hex" in result.summary
        mock_probe.assert_not_called()
        assert service.shell_factory.shells == []

    @pytest.mark.asyncio
    @patch("cpectl.control.probe")
    async def test_resolution_failure_names_missing_fields(self, mock_probe):
        dmp = _dmp({"+Status.Network": {"LAN": {"IPv4Address": "192.168.1.1"}}})
        service = DeviceControlService(dmp, shell_factory=ShellRecorder())

        result = await service.index_restart("SN123", "client1")

        assert result.error_kind == ErrorKind.RESOLUTION_FAILURE
        assert result.failed_at == "resolve"
        assert "WAN MAC not found" in result.summary
        mock_probe.assert_not_called()

    @pytest.mark.asyncio
    async def test_auth_failure(self):
        service = DeviceControlService(_dmp(token=None), shell_factory=ShellRecorder())

        result = await service.index_restart("SN123", "client1")

        assert result.ok is False
        assert result.error_kind == ErrorKind.AUTH_FAILURE

    @pytest.mark.asyncio
    @patch("cpectl.control.probe")
    async def test_unreachable_lists_ports(self, mock_probe):
        mock_probe.return_value = ReachabilityResult(False, "10.0.0.5", 8822)
        recorder = ShellRecorder()
        service = DeviceControlService(_dmp(GOOD_TELEMETRY), shell_factory=recorder)

        result = await service.index_restart("SN123", "client1")

        assert result.error_kind == ErrorKind.UNREACHABLE_ENDPOINT
        assert result.failed_at == "select_endpoint"
        text = result.display()
        assert "Tried ports: 8822, 22" in text
        assert "mobile/private IP" in text
        assert recorder.shells == []

    @pytest.mark.asyncio
    @patch("cpectl.control.probe")
    async def test_ip_override_is_probed(self, mock_probe):
        mock_probe.return_value = ReachabilityResult(True, "192.168.1.1", 22)
        recorder = ShellRecorder()
        service = DeviceControlService(_dmp(GOOD_TELEMETRY), shell_factory=recorder)

        result = await service.index_restart("SN123", "client1", ip_override="192.168.1.1")

        assert result.ok is True
        mock_probe.assert_awaited_once_with("192.168.1.1")
        assert (recorder.shells[0].host, recorder.shells[0].port) == ("192.168.1.1", 22)

    @pytest.mark.asyncio
    @patch("cpectl.control.probe")
    async def test_connect_failure_releases_session(self, mock_probe):
        mock_probe.return_value = ReachabilityResult(True, "10.0.0.5", 8822)
        recorder = ShellRecorder(connect_ok=False)
        service = DeviceControlService(_dmp(GOOD_TELEMETRY), shell_factory=recorder)

        result = await service.index_restart("SN123", "client1")

        assert result.error_kind == ErrorKind.SESSION_FAILURE
        assert result.failed_at == "connect"
        assert recorder.shells[0].commands == []
        assert recorder.shells[0].closed is True

    @pytest.mark.asyncio
    @patch("cpectl.control.probe")
    async def test_dropped_session_keeps_stop_output(self, mock_probe):
        mock_probe.return_value = ReachabilityResult(True, "10.0.0.5", 8822)
        recorder = ShellRecorder(drop_after="stop")
        service = DeviceControlService(_dmp(GOOD_TELEMETRY), shell_factory=recorder)

        result = await service.index_restart("SN123", "client1")

        assert result.ok is False
        assert result.error_kind == ErrorKind.SESSION_FAILURE
        assert result.failed_at == "start"
        assert recorder.shells[0].commands == ["/etc/init.d/ngacsclient stop"]
        assert len(result.steps) == 1
        assert "ngacs stop completed in" in result.display()
        assert recorder.shells[0].closed is True

    @pytest.mark.asyncio
    @patch("cpectl.control.probe")
    async def test_status_failure_is_best_effort(self, mock_probe):
        mock_probe.return_value = ReachabilityResult(True, "10.0.0.5", 8822)
        recorder = ShellRecorder(fail_on="ps |")
        service = DeviceControlService(_dmp(GOOD_TELEMETRY), shell_factory=recorder)

        result = await service.index_restart("SN123", "client1")

        assert result.ok is True
        assert len(result.steps) == 2
        assert any("best effort" in line for line in result.log)

    @pytest.mark.asyncio
    @patch("cpectl.control.probe")
    async def test_close_error_keeps_command_failure(self, mock_probe):
        mock_probe.return_value = ReachabilityResult(True, "10.0.0.5", 8822)
        recorder = ShellRecorder(fail_on="stop", close_error=OSError("socket already closed"))
        service = DeviceControlService(_dmp(GOOD_TELEMETRY), shell_factory=recorder)

        result = await service.index_restart("SN123", "client1")

        assert result.error_kind == ErrorKind.REMOTE_COMMAND_FAILURE
        assert result.failed_at == "stop"
        assert recorder.shells[0].disconnected is True
        assert recorder.shells[0].closed is True


class TestSingleCommands:

    @pytest.mark.asyncio
    async def test_stop_only_accepts_resolved_inputs(self):
        recorder = ShellRecorder()
        service = DeviceControlService(_dmp(), shell_factory=recorder)

        result = await service.stop_only("SN123", "10.0.0.5", 8822, "superadmin", "client1!AABBCC")

        assert result.ok is True
        assert recorder.shells[0].commands == ["/etc/init.d/ngacsclient stop"]
        assert recorder.shells[0].password == "client1!AABBCC"
        assert "ngacs stop completed for SN123." in result.display()
        assert recorder.shells[0].closed is True

    @pytest.mark.asyncio
    async def test_start_only_connect_failure(self):
        recorder = ShellRecorder(connect_ok=False)
        service = DeviceControlService(_dmp(), shell_factory=recorder)

        result = await service.start_only("SN123", "10.0.0.5", 8822, "superadmin", "pw")

        assert result.ok is False
        assert result.error_kind == ErrorKind.SESSION_FAILURE
        assert "Failed to connect to SN123 (10.0.0.5:8822)" in result.summary

    @pytest.mark.asyncio
    async def test_resolve_credentials_uses_raw_mac(self):
        service = DeviceControlService(_dmp(), shell_factory=ShellRecorder())
        service.resolver = MagicMock()
        service.resolver.resolve = AsyncMock(return_value=DeviceEndpoint("10.0.0.5", "aa:bb:cc"))

        endpoint, credential = await service.resolve_credentials("SN123", "client1")

        assert endpoint.ip == "10.0.0.5"
        assert credential.password == "client1!AABBCC"

    @pytest.mark.asyncio
    async def test_resolve_credentials_not_found(self):
        service = DeviceControlService(_dmp(), shell_factory=ShellRecorder())
        service.resolver = MagicMock()
        service.resolver.resolve = AsyncMock(return_value=None)

        with pytest.raises(ResolutionFailure):
            await service.resolve_credentials("SN123", "client1")


class TestReboot:

    @pytest.mark.asyncio
    async def test_reboot_success(self):
        dmp = _dmp()
        dmp.reboot.return_value = RebootResponse(ok=True, status_code=200, reason="OK")
        recorder = ShellRecorder()
        service = DeviceControlService(dmp, shell_factory=recorder)

        result = await service.reboot("SN123")

        assert result.ok is True
        assert "Reboot triggered for SN123: 200" in result.summary
        assert any(line.startswith("⏱️ Time:") for line in result.log)
        dmp.reboot.assert_called_once_with("tok", "SN123")
        dmp.get_parameter.assert_not_called()
        assert recorder.shells == []

    @pytest.mark.asyncio
    async def test_reboot_rejected(self):
        dmp = _dmp()
        dmp.reboot.return_value = RebootResponse(ok=False, status_code=404, reason="Not Found", body="no cpe")
        service = DeviceControlService(dmp, shell_factory=ShellRecorder())

        result = await service.reboot("SN123")

        assert result.ok is False
        assert result.error_kind == ErrorKind.API_REJECTED
        assert "404" in result.summary

    @pytest.mark.asyncio
    async def test_reboot_without_token(self):
        dmp = _dmp(token=None)
        service = DeviceControlService(dmp, shell_factory=ShellRecorder())

        result = await service.reboot("SN123")

        assert result.error_kind == ErrorKind.AUTH_FAILURE
        dmp.reboot.assert_not_called()

    @pytest.mark.asyncio
    async def test_reboot_transport_error(self):
        dmp = _dmp()
        dmp.reboot.side_effect = OSError("connection reset")
        service = DeviceControlService(dmp, shell_factory=ShellRecorder())

        result = await service.reboot("SN123")

        assert result.ok is False
        assert "connection reset" in result.summary


class TestOnlineAndInfo:

    @pytest.mark.asyncio
    @patch("cpectl.control.ping", new_callable=AsyncMock)
    async def test_check_online_by_ping(self, mock_ping):
        mock_ping.return_value = (True, 4.0)
        recorder = ShellRecorder()
        service = DeviceControlService(_dmp(), shell_factory=recorder)

        result = await service.check_online("10.0.0.5", 8822, "superadmin", "pw")

        assert (result.success, result.online, result.dmp_online) == (True, True, True)
        mock_ping.assert_awaited_once_with("10.0.0.5", 3.0)
        assert recorder.shells == []

    @pytest.mark.asyncio
    @patch("cpectl.control.ping", new_callable=AsyncMock)
    async def test_check_online_falls_back_to_ssh(self, mock_ping):
        mock_ping.return_value = (False, None)
        recorder = ShellRecorder()
        service = DeviceControlService(_dmp(), shell_factory=recorder)

        result = await service.check_online("10.0.0.5", 8822, "superadmin", "pw")

        assert result.online is True
        assert recorder.shells[0].closed is True

    @pytest.mark.asyncio
    @patch("cpectl.control.ping", new_callable=AsyncMock)
    async def test_check_online_offline(self, mock_ping):
        mock_ping.return_value = (False, None)
        service = DeviceControlService(_dmp(), shell_factory=ShellRecorder(connect_ok=False))

        result = await service.check_online("10.0.0.5", 8822, "superadmin", "pw")

        assert (result.success, result.online, result.dmp_online) == (False, False, False)

    @pytest.mark.asyncio
    @patch("cpectl.control.ping", new_callable=AsyncMock)
    async def test_ping_device(self, mock_ping):
        mock_ping.return_value = (True, 12.4)
        service = DeviceControlService(_dmp(), shell_factory=ShellRecorder())

        result = await service.ping_device("10.0.0.5")

        assert result.ok is True
        assert "Roundtrip time: 12ms" in result.summary

    @pytest.mark.asyncio
    async def test_get_info_reports_clean_mac(self):
        service = DeviceControlService(_dmp(GOOD_TELEMETRY), shell_factory=ShellRecorder())

        result = await service.get_info("SN123")

        assert result.ok is True
        text = result.display()
        assert "Candidate IP from DMP: 10.0.0.5" in text
        assert "WAN MAC (raw) from DMP: aa:bb:cc:dd:ee:ff" in text
        assert "WAN MAC (clean 12-hex): AABBCCDDEEFF" in text

    @pytest.mark.asyncio
    async def test_get_info_reports_partials(self):
        dmp = _dmp({"+Status.Network": {"LAN": {"IPv4Address": "192.168.1.1"}}})
        service = DeviceControlService(dmp, shell_factory=ShellRecorder())

        result = await service.get_info("SN123")

        assert result.ok is False
        assert result.error_kind == ErrorKind.RESOLUTION_FAILURE
        assert "Candidate IP from DMP: 192.168.1.1" in result.display()
        assert "WAN MAC (raw) from DMP: (missing)" in result.display()

    @pytest.mark.asyncio
    async def test_get_details(self):
        dmp = _dmp({
            "+Status.Network": {"Mobile": {"IPv4Address": "100.64.0.9"}},
            "+Status.Network.LAN": {"LAN": {"IPv4Address": "192.168.1.1", "MACAddress": "aa:bb:cc:dd:ee:ff"}},
        })
        service = DeviceControlService(dmp, shell_factory=ShellRecorder())

        result = await service.get_details("SN123")

        assert result.ok is True
        text = result.display()
        assert "Primary IP (WAN/Mobile): 100.64.0.9" in text
        assert "Secondary IP (LAN): 192.168.1.1" in text

    @pytest.mark.asyncio
    @patch("cpectl.control.probe")
    async def test_restart_and_reboot_runs_both(self, mock_probe):
        mock_probe.return_value = ReachabilityResult(False, "10.0.0.5", 8822)
        dmp = _dmp(GOOD_TELEMETRY)
        dmp.reboot.return_value = RebootResponse(ok=True, status_code=200, reason="OK")
        service = DeviceControlService(dmp, shell_factory=ShellRecorder())

        restart, reboot = await service.restart_and_reboot("SN123", "client1")

        assert restart.ok is False
        assert reboot.ok is True
