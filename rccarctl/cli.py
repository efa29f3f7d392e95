"""Typer CLI entrypoint."""

from __future__ import annotations

import logging

import typer

from rccarctl.api import Client
from rccarctl.core.errors import RCCarError, WriteRejectedError
from rccarctl.core.model import CommandKind, DispatchOutcome, EventKind

app = typer.Typer(help="Drive a BLE RC car from the command line")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_client() -> Client:
    client = Client()
    for warning in getattr(client, "load_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)
    return client


def _connect_ready(client: Client, device: str | None) -> None:
    client.connect(device)
    if not client.wait_until_ready():
        raise RCCarError("RC car did not become ready (not in range or not compatible)")


def _connect_discovered(client: Client, device: str | None) -> None:
    client.connect(device)
    event = client.wait_for(
        EventKind.SERVICES_DISCOVERED,
        EventKind.DISCOVERY_FAILED,
        EventKind.DISCONNECTED,
        timeout=client.settings.ready_timeout_s,
    )
    if event is None or event.kind is EventKind.DISCONNECTED:
        raise RCCarError("Service discovery did not complete")


def _send(kind: CommandKind, value: str, device: str | None, raw: bool) -> None:
    try:
        with _build_client() as client:
            payload = client.payload_for(kind, value, raw=raw)
            _connect_ready(client, device)
            try:
                outcome = client.send_confirmed(kind, value, raw=raw)
            finally:
                client.disconnect()
            if outcome is DispatchOutcome.REJECTED:
                raise WriteRejectedError(f"{kind.value} command rejected by the peripheral")
            if outcome is not DispatchOutcome.WRITTEN:
                raise RCCarError(f"{kind.value} command not sent: {outcome.value}")
            typer.echo(f"Sent {kind.value}={value} payload={payload.hex()}")
    except RCCarError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("presets")
def list_presets() -> None:
    """List the named move and sound payloads."""
    try:
        client = _build_client()
        for kind, names in client.list_presets().items():
            typer.echo(f"{kind.value}: {', '.join(names) if names else '<none>'}")
    except RCCarError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("move")
def move(
    value: str,
    device: str | None = typer.Option(None, "--device", help="Peripheral address"),
    raw: bool = typer.Option(False, "--hex", help="Treat VALUE as a hex payload"),
) -> None:
    """Send a move command (preset name, or hex payload with --hex)."""
    _send(CommandKind.MOVE, value, device, raw)


@app.command("sound")
def sound(
    value: str,
    device: str | None = typer.Option(None, "--device", help="Peripheral address"),
    raw: bool = typer.Option(False, "--hex", help="Treat VALUE as a hex payload"),
) -> None:
    """Send a sound command (preset name, or hex payload with --hex)."""
    _send(CommandKind.SOUND, value, device, raw)


@app.command("services")
def list_services(
    device: str | None = typer.Option(None, "--device", help="Peripheral address"),
) -> None:
    """Connect and list the GATT services and characteristics of the peripheral."""
    try:
        with _build_client() as client:
            client.manager.report_discovery_failures = True
            _connect_discovered(client, device)
            services = client.supported_services() or []
            typer.echo(f"Ready: {'yes' if client.is_ready else 'no (not an RC car profile)'}")
            for service in services:
                typer.echo(service.uuid)
                for characteristic in service.characteristics:
                    typer.echo(f"  {characteristic.uuid}")
            client.disconnect()
    except RCCarError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
