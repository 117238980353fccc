"""Thin CLI wrapper over :class:`lbslm.Client`."""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import json
import logging
import sys
from collections.abc import Awaitable, Callable, Coroutine
from datetime import datetime
from typing import Any, TypeVar

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.syntax import Syntax

from lbslm._constants import DEFAULT_APP_ID, DEFAULT_REGION
from lbslm.client import Client, Device
from lbslm.exceptions import LbslmError, MissingCredentialsConfig
from lbslm.models import DeviceState

app = typer.Typer(help="Control LBSLM smart diffusers.", invoke_without_command=True)

T = TypeVar("T")


@dataclasses.dataclass
class Settings:
    """Account settings collected from options / environment variables."""

    username: str | None
    password: str | None
    region: str = DEFAULT_REGION
    app_id: str = DEFAULT_APP_ID


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@app.callback()
def main(
    ctx: typer.Context,
    username: str | None = typer.Option(
        None, "--username", "-u", envvar="LBSLM_USERNAME", help="Account username (email)"
    ),
    password: str | None = typer.Option(
        None, "--password", "-p", envvar="LBSLM_PASSWORD", help="Account password"
    ),
    region: str = typer.Option(
        DEFAULT_REGION, "--region", "-r", envvar="LBSLM_REGION", help="Cloud region (CN or US)"
    ),
    app_id: str = typer.Option(DEFAULT_APP_ID, "--app-id", envvar="LBSLM_APPID", help="App id"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    """Control LBSLM smart diffusers."""
    _configure_logging(verbose)
    ctx.obj = Settings(username=username, password=password, region=region, app_id=app_id)
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit(0)


def _print_json(obj: object) -> None:
    """Print JSON, syntax-highlighted when stdout is a TTY and compact otherwise."""
    if sys.stdout.isatty():
        Console().print(Syntax(json.dumps(obj, indent=2), "json"))
    else:
        typer.echo(json.dumps(obj))


def _settings(ctx: typer.Context) -> Settings:
    """Return the account settings or exit with an error."""
    settings: Settings = ctx.obj
    if not settings.username or not settings.password:
        typer.echo(
            "No credentials. Pass --username/--password or set LBSLM_USERNAME/LBSLM_PASSWORD.",
            err=True,
        )
        raise typer.Exit(1)
    return settings


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """Run *coro*, turning library errors into a clean exit."""
    try:
        return asyncio.run(coro)
    except LbslmError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1) from None


async def _login(settings: Settings) -> Client:
    username, password = settings.username, settings.password
    if not username or not password:
        raise MissingCredentialsConfig("No username/password configured.")
    return await Client.login(username, password, region=settings.region, app_id=settings.app_id)


def _select(client: Client, selector: str) -> Device:
    """Resolve ``--device`` (index or nid) or exit with an error.

    An exact nid match wins over an index, since nids are numeric too.
    """
    try:
        if selector.isdigit() and all(info.nid != selector for info in client.devices):
            return client.device(int(selector))
        return client.device(selector)
    except (IndexError, KeyError) as e:
        typer.echo(str(e).strip("'\""), err=True)
        raise typer.Exit(1) from None


async def _connect(settings: Settings, selector: str) -> Device:
    client = await _login(settings)
    return _select(client, selector)


def _format_state(state: DeviceState) -> list[str]:
    level = f"{state.consumable_level}%"
    if state.needs_attention:
        level += " (refill soon)"
    return [
        f"Power: {'ON' if state.is_on else 'OFF'}",
        f"Intensity: {state.intensity}% ({state.run_seconds}s run)",
        f"Oil level: {level}",
        f"Child lock: {'locked' if state.locked else 'unlocked'}",
    ]


_DEVICE_OPTION = typer.Option("0", "--device", "-d", help="Device index or nid")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def devices(ctx: typer.Context) -> None:
    """List the devices on the account."""
    settings = _settings(ctx)
    typer.echo("Fetching devices...")
    client = _run(_login(settings))
    for i, info in enumerate(client.devices):
        typer.echo(f"  [{i}] {info.name} — {info.model}")
        typer.echo(f"        nid: {info.nid}  serial: {info.serial_number}")
        if info.oil_name:
            typer.echo(f"        scent: {info.oil_name}")


@app.command()
def status(
    ctx: typer.Context,
    device: str = _DEVICE_OPTION,
    as_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Fetch and show the current device status."""
    settings = _settings(ctx)

    async def run() -> tuple[Device, DeviceState | None]:
        dev = await _connect(settings, device)
        return dev, await dev.poll_status()

    dev, state = _run(run())
    if state is None:
        typer.echo("No status returned.", err=True)
        raise typer.Exit(1)

    if as_json:
        _print_json({**dataclasses.asdict(state), "intensity": state.intensity})
        return

    if sys.stdout.isatty():
        typer.echo(typer.style(dev.name, bold=True))
    else:
        typer.echo(dev.name)
    for line in _format_state(state):
        typer.echo(f"  {line}")


def _command(
    ctx: typer.Context,
    selector: str,
    label: str,
    action: Callable[[Device], Awaitable[None]],
) -> None:
    """Connect to the selected device and run *action* on it."""
    settings = _settings(ctx)

    async def run() -> Device:
        dev = await _connect(settings, selector)
        await action(dev)
        return dev

    dev = _run(run())
    typer.echo(f"{dev.name}: {label}.")


@app.command()
def on(ctx: typer.Context, device: str = _DEVICE_OPTION) -> None:
    """Switch the diffuser on."""
    _command(ctx, device, "switched on", lambda dev: dev.set_on(True))


@app.command()
def off(ctx: typer.Context, device: str = _DEVICE_OPTION) -> None:
    """Switch the diffuser off."""
    _command(ctx, device, "switched off", lambda dev: dev.set_on(False))


@app.command()
def intensity(
    ctx: typer.Context,
    value: int = typer.Argument(..., min=0, max=100, help="Intensity in percent (0-100)"),
    device: str = _DEVICE_OPTION,
) -> None:
    """Set the mist intensity (run time of the device timer)."""
    _command(ctx, device, f"intensity set to {value}%", lambda dev: dev.set_intensity(value))


@app.command()
def lock(ctx: typer.Context, device: str = _DEVICE_OPTION) -> None:
    """Lock the physical controls."""
    _command(ctx, device, "controls locked", lambda dev: dev.set_lock(True))


@app.command()
def unlock(ctx: typer.Context, device: str = _DEVICE_OPTION) -> None:
    """Unlock the physical controls."""
    _command(ctx, device, "controls unlocked", lambda dev: dev.set_lock(False))


@app.command()
def reset(ctx: typer.Context, device: str = _DEVICE_OPTION) -> None:
    """Reset the oil level to 100% after a refill."""
    _command(ctx, device, "oil level reset", lambda dev: dev.reset_consumable())


@app.command()
def watch(
    ctx: typer.Context,
    device: str = _DEVICE_OPTION,
    interval: float = typer.Option(30, "--interval", "-i", min=1, help="Seconds between polls"),
) -> None:
    """Poll the device periodically and print every status update.

    \b
    Press Ctrl+C to stop.
    """
    settings = _settings(ctx)
    with contextlib.suppress(KeyboardInterrupt):
        _run(_watch_async(settings, device, interval))


async def _watch_async(settings: Settings, selector: str, interval: float) -> None:
    """Async implementation of the watch command."""
    dev = await _connect(settings, selector)
    is_tty = sys.stdout.isatty()
    typer.echo(f"Watching {dev.name} every {interval:g}s... (Ctrl+C to stop)")

    def on_update(device: Device, state: DeviceState) -> None:
        ts = datetime.now().strftime("%H:%M:%S")
        summary = ", ".join(_format_state(state))
        if is_tty:
            typer.echo(f"[{ts}] {typer.style(device.name, bold=True)} {summary}")
        else:
            typer.echo(f"[{ts}] {device.name} {summary}")

    poller = dev.start_polling(on_update, interval=interval)
    try:
        await poller.wait()
    finally:
        await poller.stop()
