#!/usr/bin/env python3
from __future__ import annotations
import asyncio
import contextlib
import json
import sys
from pathlib import Path

import click

from .config import Config
from .control import DeviceControlService
from .credentials import mask_secret
from .drivers.dmp import DmpClient
from .errors import CpectlError, OperationResult
from .utils.logging import (
    confirm,
    create_progress,
    error,
    info,
    print_dict,
    report,
    setup_logging,
    success,
    warning,
)
from .utils.network import discover_services, is_private_address


@contextlib.contextmanager
def _service():
    service = DeviceControlService(DmpClient())
    try:
        yield service
    finally:
        service.dmp.close()


def _run(coro, description: str):
    with create_progress() as progress:
        progress.add_task(description, total=None)
        return asyncio.run(coro)


def _emit(result: OperationResult, as_json: bool = False):
    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        report(result.display())
    if not result.ok:
        sys.exit(1)


serial_option = click.option(
    "--serial", "-s", envvar="CPECTL_SERIAL", required=True, help="Device serial number"
)
client_option = click.option(
    "--client-id", "-c", envvar="CPECTL_CLIENT_ID", required=True, help="Client ID used in the SSH password"
)
json_option = click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option("--log-file", type=click.Path(), help="Log to file (default: ~/.cpectl/logs/cpectl.log)")
def cli(verbose: bool, log_file: str | None):
    Config.init_directories()
    log_path = Path(log_file) if log_file else Config.LOGS_DIR / "cpectl.log"
    setup_logging(verbose, log_path)


@cli.command()
@serial_option
@client_option
@click.option("--ip", "ip_override", help="Probe this IP instead of the one reported by DMP")
@json_option
def restart(serial: str, client_id: str, ip_override: str | None, as_json: bool):
    """Index restart: stop and start the ngacs client over SSH."""
    if not as_json:
        info(f"Triggering index restart for {serial}")
    with _service() as service:
        result = _run(service.index_restart(serial, client_id, ip_override), "Restarting ngacs...")
    _emit(result, as_json)


@cli.command()
@serial_option
@click.option("--yes", is_flag=True, help="Do not prompt for confirmation")
def reboot(serial: str, yes: bool):
    """Reboot the device through the DMP API."""
    if not yes and not confirm(f"This will reboot {serial}. Continue?"):
        info("Reboot cancelled")
        return
    with _service() as service:
        result = _run(service.reboot(serial), "Triggering reboot via API...")
    _emit(result)


@cli.command()
@serial_option
@client_option
@click.option("--yes", is_flag=True, help="Do not prompt for confirmation")
def both(serial: str, client_id: str, yes: bool):
    """Index restart, then reboot through the DMP API."""
    if not yes and not confirm(f"This will restart ngacs and reboot {serial}. Continue?"):
        info("Cancelled")
        return
    with _service() as service:
        restart_result, reboot_result = _run(
            service.restart_and_reboot(serial, client_id), "Restarting ngacs, then rebooting..."
        )
    report(restart_result.display())
    report(reboot_result.display())
    if not (restart_result.ok and reboot_result.ok):
        sys.exit(1)


def _single(serial: str, client_id: str, port: int, action: str, as_json: bool):
    with _service() as service:

        async def _go():
            endpoint, credential = await service.resolve_credentials(serial, client_id)
            if action == "stop":
                return await service.stop_only(serial, endpoint.ip, port, credential.username, credential.password)
            return await service.start_only(serial, endpoint.ip, port, credential.username, credential.password)

        try:
            result = _run(_go(), f"ngacs {action}...")
        except CpectlError as e:
            error(str(e))
            sys.exit(1)
    _emit(result, as_json)


@cli.command()
@serial_option
@client_option
@click.option("--port", default=Config.DEFAULT_SSH_PORT, help="SSH port")
@json_option
def stop(serial: str, client_id: str, port: int, as_json: bool):
    """SSH ngacs stop only."""
    _single(serial, client_id, port, "stop", as_json)


@cli.command()
@serial_option
@client_option
@click.option("--port", default=Config.DEFAULT_SSH_PORT, help="SSH port")
@json_option
def start(serial: str, client_id: str, port: int, as_json: bool):
    """SSH ngacs start only."""
    _single(serial, client_id, port, "start", as_json)


@cli.command()
@serial_option
@client_option
@click.option("--port", default=Config.DEFAULT_SSH_PORT, help="SSH port")
@json_option
def check(serial: str, client_id: str, port: int, as_json: bool):
    """Check whether the device is online (ping, then SSH)."""
    with _service() as service:

        async def _go():
            endpoint, credential = await service.resolve_credentials(serial, client_id)
            return await service.check_online(endpoint.ip, port, credential.username, credential.password)

        try:
            result = _run(_go(), "Checking if device is online...")
        except CpectlError as e:
            error(str(e))
            sys.exit(1)
    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        print_dict(
            {"Success": result.success, "Online": result.online, "DMPOnline": result.dmp_online},
            "Online check",
        )
    if not result.online:
        sys.exit(1)


@cli.command()
@click.option("--ip", required=True, help="Device IP address")
def ping(ip: str):
    """Send one ICMP echo to the device."""
    with _service() as service:
        result = _run(service.ping_device(ip), f"Pinging {ip}...")
    _emit(result)


@cli.command()
@serial_option
@json_option
def getinfo(serial: str, as_json: bool):
    """Show the IP and WAN MAC the DMP reports for the device."""
    with _service() as service:
        result = _run(service.get_info(serial), "Querying DMP parameters...")
    _emit(result, as_json)


@cli.command()
@serial_option
@json_option
def details(serial: str, as_json: bool):
    """Show primary (WAN/Mobile) and secondary (LAN) addresses with lookup times."""
    with _service() as service:
        result = _run(service.get_details(serial), "Querying DMP parameters...")
    _emit(result, as_json)


@cli.command()
@click.option("--ip", required=True, help="Device IP address")
def discover(ip: str):
    """Check which SSH ports answer on the device."""
    info(f"Discovering services at {ip}")
    if is_private_address(ip):
        warning("Target IP is private or carrier-NAT; a VPN or LAN path may be required")
    services = discover_services(ip, Config.TCP_CONNECT_TIMEOUT)
    print_dict(services, "Available Services")
    if any(services.values()):
        success("Device answers on at least one SSH port")
    else:
        error("No SSH port answered")


@cli.command()
def whoami():
    """Show the DMP identity that will be used to log in."""
    client = DmpClient()
    try:
        print_dict(
            {
                "base_url": client.base_url,
                "email": client.credentials.email or "(not set)",
                "password": mask_secret(client.credentials.password) or "(not set)",
            },
            "DMP identity",
        )
    finally:
        client.close()


@cli.command()
def version():
    from . import __version__

    click.echo(f"cpectl version {__version__}")


def main():
    try:
        cli()
    except KeyboardInterrupt:
        error("\nOperation cancelled by user")
        sys.exit(1)
    except Exception as e:
        error(f"Unexpected error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
