"""CLI entry point.

Commands:
- serve: Run the API server
- generate: Stream palettes for a theme to the terminal
- producers: List the producer catalog
"""

import asyncio
import sys
from contextlib import aclosing
from enum import StrEnum
from typing import Annotated, Any, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from palette_relay.dal.sessions import InMemorySessionStore
from palette_relay.exceptions import PaletteRelayError, SinkClosedError
from palette_relay.llm.catalog import PRODUCER_CATALOG, resolve_producer_keys
from palette_relay.logging_config import configure_logging
from palette_relay.services.generation import GenerationRequest, GenerationService
from palette_relay.settings import get_settings
from palette_relay.streaming.sse import EventSink

app = typer.Typer(
    name="palette-relay",
    help="Stream color palettes from several LLMs at once",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()


class LogLevel(StrEnum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


@app.callback()
def main(
    log_level: Annotated[
        Optional[LogLevel],  # noqa: UP007
        typer.Option("--log-level", case_sensitive=False, help="Override LOG_LEVEL"),
    ] = None,
) -> None:
    configure_logging(log_level.value if log_level else None)  # type: ignore[arg-type]


@app.command()
def serve(
    host: Annotated[
        Optional[str],  # noqa: UP007
        typer.Option("--host", "-h", help="Host to bind to (default: API_HOST)"),
    ] = None,
    port: Annotated[
        Optional[int],  # noqa: UP007
        typer.Option("--port", "-p", help="Port to bind to (default: API_PORT)"),
    ] = None,
    reload: Annotated[
        bool,
        typer.Option("--reload", "-r", help="Enable auto-reload for development"),
    ] = False,
    workers: Annotated[
        Optional[int],  # noqa: UP007
        typer.Option("--workers", "-w", help="Number of worker processes"),
    ] = None,
) -> None:
    """Start the Palette Relay API server."""
    import uvicorn

    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port
    workers = workers or settings.api_workers

    console.print(
        Panel(
            f"[bold green]Starting Palette Relay API Server[/bold green]\n"
            f"Host: {host}\n"
            f"Port: {port}\n"
            f"Workers: {workers}\n"
            f"Reload: {reload}",
            title="Palette Relay",
            border_style="green",
        )
    )

    uvicorn.run(
        "palette_relay.api.main:app",
        host=host,
        port=port,
        reload=reload,
        workers=workers if not reload else 1,
        log_level="info",
    )


def _swatch(colors: list[str]) -> Text:
    text = Text()
    for color in colors:
        text.append("   ", style=f"on {color}")
    text.append("  " + " ".join(colors), style="dim")
    return text


def render_payload(payload: dict[str, Any]) -> None:
    """Print one wire payload as terminal output."""
    kind = payload["type"]
    if kind == "session":
        console.print(f"[dim]session {payload['sessionId']} v{payload['version']}[/dim]")
    elif kind == "model_start":
        console.print(f"[bold cyan]{payload['modelName']}[/bold cyan] started")
    elif kind == "palette":
        prefix = f"[cyan]{payload['modelKey']:>22}[/cyan] " if "modelKey" in payload else ""
        console.print(Text.from_markup(prefix) + _swatch(payload["colors"]))
    elif kind == "model_complete":
        console.print(
            f"[green]{payload['modelKey']}[/green] finished: "
            f"{payload['paletteCount']} palettes in {payload['duration']}ms"
        )
    elif kind == "model_error":
        console.print(f"[red]{payload['modelKey']} failed: {payload['error']}[/red]")
    elif kind == "done":
        total = sum(len(p) for p in payload["allPalettes"].values())
        console.print(f"[bold green]Done[/bold green]: {total} palettes")


async def _run_generate(
    service: GenerationService,
    request: GenerationRequest,
    keys: list[str],
    multi: bool,
    sse: bool,
) -> None:
    if sse:
        sink = EventSink(sys.stdout)
        await sink.drain(service.stream(request, keys, multi=multi))
        return

    async with aclosing(service.payloads(request, keys, multi=multi)) as payloads:
        async for payload in payloads:
            render_payload(payload)


@app.command()
def generate(
    query: Annotated[str, typer.Argument(help="Theme to generate palettes for")],
    model: Annotated[
        Optional[list[str]],  # noqa: UP007
        typer.Option("--model", "-m", help="Producer key; repeat to compare several"),
    ] = None,
    compare: Annotated[
        bool,
        typer.Option("--compare", "-c", help="Run every enabled producer"),
    ] = False,
    limit: Annotated[
        Optional[int],  # noqa: UP007
        typer.Option("--limit", "-n", help="Palettes to ask each producer for"),
    ] = None,
    sse: Annotated[
        bool,
        typer.Option("--sse", help="Write raw Server-Sent Events to stdout"),
    ] = False,
) -> None:
    """Stream palettes for QUERY as they are generated."""
    settings = get_settings()
    if model:
        keys = list(model)
    elif compare:
        keys = [spec.key for spec in resolve_producer_keys(settings.enabled_producer_keys)]
    else:
        keys = [settings.default_producer]
    multi = compare or len(keys) > 1

    service = GenerationService(InMemorySessionStore(), settings)
    request = GenerationRequest(query=query, limit=limit or settings.default_limit)

    try:
        asyncio.run(_run_generate(service, request, keys, multi, sse))
    except SinkClosedError:
        # stdout went away (e.g. piped into head)
        raise typer.Exit(code=0) from None
    except PaletteRelayError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1) from None


@app.command()
def producers() -> None:
    """List the producer catalog."""
    settings = get_settings()
    enabled = set(settings.enabled_producer_keys) or set(PRODUCER_CATALOG)

    table = Table(title="Producers", show_header=True)
    table.add_column("Key", style="cyan")
    table.add_column("Name")
    table.add_column("Provider")
    table.add_column("Model")
    table.add_column("Mode")
    table.add_column("Enabled", justify="center")

    for spec in PRODUCER_CATALOG.values():
        key = spec.key
        if key == settings.default_producer:
            key += " [bold](default)[/bold]"
        table.add_row(
            key,
            spec.name,
            spec.provider,
            spec.model_id,
            spec.mode,
            "yes" if spec.key in enabled else "no",
        )

    console.print(table)


if __name__ == "__main__":
    app()
