"""PlayCamp Webhooks CLI - sign, verify and receive webhook batches."""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from pathlib import Path

import click
import structlog
from rich.console import Console
from rich.table import Table

from playcamp_webhooks.config import ENV_PREFIX, WebhookSettings, load_config_from_file
from playcamp_webhooks.dispatcher import EventDispatcher
from playcamp_webhooks.events import EventType
from playcamp_webhooks.verifier import DEFAULT_TOLERANCE_SECONDS, WebhookVerifier

console = Console()

BANNER = "PlayCamp Webhooks - verify and dispatch batched webhook deliveries"


def _configure_logging(log_level: str) -> None:
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper())
        ),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


def _read_payload(payload_file: str) -> bytes:
    if payload_file == "-":
        return sys.stdin.buffer.read()
    return Path(payload_file).read_bytes()


@click.group()
@click.option(
    "--log-level",
    "-l",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default="warning",
    help="Log level (default: warning)",
)
def main(log_level: str):
    """PlayCamp Webhooks - verify and dispatch batched webhook deliveries."""
    _configure_logging(log_level)


@main.command()
@click.argument("payload_file", type=click.Path(allow_dash=True))
@click.option("--secret", envvar=f"{ENV_PREFIX}SECRET", required=True, help="Webhook secret")
@click.option("--timestamped", "-t", is_flag=True, help="Emit t=<unix>,v1=<hex> format")
@click.option("--now", type=int, default=None, help="Unix time to embed (timestamped only)")
def sign(payload_file: str, secret: str, timestamped: bool, now: int | None):
    """Print the signature header for a payload file.

    Use "-" to read the payload from stdin. The file is signed byte for byte.
    """
    try:
        verifier = WebhookVerifier(secret)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    payload = _read_payload(payload_file)
    click.echo(verifier.construct_signature(payload, timestamped=timestamped, now=now))


@main.command()
@click.argument("payload_file", type=click.Path(allow_dash=True))
@click.option("--signature", "-s", required=True, help="Signature header value")
@click.option("--secret", envvar=f"{ENV_PREFIX}SECRET", required=True, help="Webhook secret")
@click.option(
    "--tolerance",
    type=int,
    default=DEFAULT_TOLERANCE_SECONDS,
    show_default=True,
    help="Replay window in seconds for timestamped signatures",
)
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def verify(payload_file: str, signature: str, secret: str, tolerance: int, json_output: bool):
    """Verify a payload file against a signature header.

    Exits with status 1 when the delivery would be rejected.
    """
    try:
        verifier = WebhookVerifier(secret, tolerance_seconds=tolerance)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    payload = _read_payload(payload_file)
    result = verifier.verify(payload, signature)

    if json_output:
        output = {
            "valid": result.valid,
            "error": result.error.value if result.error else None,
            "timestamp": result.timestamp,
            "events": [e.event for e in result.payload.events] if result.payload else [],
        }
        click.echo(json.dumps(output, indent=2))
    elif result.valid:
        console.print(f"[green]OK[/green] - {len(result.payload.events)} event(s)")
        table = Table(title="Events")
        table.add_column("#", style="dim")
        table.add_column("Event", style="cyan")
        table.add_column("Timestamp", style="green")
        table.add_column("Known", style="dim")
        for index, event in enumerate(result.payload.events):
            known = "yes" if event.event_type is not None else "no"
            table.add_row(str(index), event.event, event.timestamp, known)
        console.print(table)
    else:
        console.print(f"[red]REJECTED[/red] - {result.error.value}: {result.message}")

    if not result.valid:
        sys.exit(1)


def _logging_dispatcher() -> EventDispatcher:
    """Dispatcher that logs every known event; a stand-in until real handlers are wired."""
    log = structlog.get_logger()
    dispatcher = EventDispatcher()

    for event_type in EventType:

        def handler(data: dict, tag: str = event_type.value) -> None:
            log.info("Webhook event received", tag=tag, keys=sorted(data))

        dispatcher.on(event_type, handler)

    return dispatcher


async def _serve(settings: WebhookSettings, dispatcher: EventDispatcher) -> None:
    from playcamp_webhooks.server import create_app, start_server

    app = create_app(
        settings.verifier(),
        dispatcher,
        signature_header=settings.signature_header,
        path=settings.path,
        fail_on_handler_error=settings.fail_on_handler_error,
    )
    runner = await start_server(app, settings.host, settings.port)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    try:
        await stop.wait()
    finally:
        console.print("\n[yellow]Shutting down...[/yellow]")
        await runner.cleanup()


@main.command()
@click.option(
    "--config", "-c",
    "config_file",
    type=click.Path(exists=True),
    help="Path to YAML or TOML config file",
)
@click.option("--host", default=None, help="Bind host")
@click.option("--port", "-p", type=int, default=None, help="Bind port")
def serve(config_file: str | None, host: str | None, port: int | None):
    """Run an HTTP receiver that verifies and logs incoming batches."""
    try:
        if config_file:
            settings = WebhookSettings.from_file(config_file, host=host, port=port)
        else:
            overrides = {k: v for k, v in {"host": host, "port": port}.items() if v is not None}
            settings = WebhookSettings(**overrides)
        settings.secret_value()
    except ValueError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(1)

    _configure_logging(settings.log_level)
    console.print(BANNER, style="cyan")
    console.print(
        f"Listening on http://{settings.host}:{settings.port}{settings.path} "
        f"(header: {settings.signature_header})",
        style="yellow",
    )

    try:
        asyncio.run(_serve(settings, _logging_dispatcher()))
    except KeyboardInterrupt:
        pass


@main.command()
def version():
    """Show version information."""
    from playcamp_webhooks import __version__

    console.print(BANNER, style="cyan")
    console.print(f"[bold]Version:[/bold] {__version__}")
    console.print(f"[bold]Python:[/bold] {sys.version}")


@main.group()
def config():
    """View configuration settings.

    All settings can be configured via environment variables with the
    PLAYCAMP_WEBHOOK_ prefix.
    """
    pass


@config.command("show")
@click.option(
    "--config", "-c",
    "config_file",
    type=click.Path(exists=True),
    help="Path to YAML or TOML config file",
)
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def config_show(config_file: str | None, json_output: bool):
    """Show current configuration settings.

    Values come from the config file, environment variables or defaults.
    The secret is always masked.
    """
    try:
        if config_file:
            settings = WebhookSettings(**load_config_from_file(config_file))
        else:
            settings = WebhookSettings()
    except ValueError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(1)

    display = settings.to_display_dict()

    if json_output:
        click.echo(json.dumps(display, indent=2))
        return

    table = Table(title="Webhook Settings")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    table.add_column("Env Variable", style="dim")

    for key, value in display.items():
        value_str = str(value) if value is not None else "[dim]None[/dim]"
        table.add_row(key, value_str, f"{ENV_PREFIX}{key.upper()}")

    console.print(table)


if __name__ == "__main__":
    main()
