#!/usr/bin/env python3

from __future__ import annotations
import asyncio
import json
import os
from pathlib import Path
from typing import Any, Optional

import typer
from aioconsole import ainput
from rich.console import Console
from rich.table import Table

from wsconn.config import DEFAULT_RECONNECT_INTERVAL_MS, ConnectionConfig
from wsconn.manager import ConnectionManager
from shared.log import configure_root_logging, get_logger

app = typer.Typer(help="wsconn console client")
console = Console()
logger = get_logger(__name__)


def _default_url() -> str:
    return os.getenv("WSCONN_URL", "ws://localhost:8765")


def _default_token() -> str:
    return os.getenv("WSCONN_TOKEN", "")


def _load_config(
    url: Optional[str],
    token: Optional[str],
    reconnect_interval: Optional[int],
    config_file: Optional[Path],
    **callbacks: Any,
) -> ConnectionConfig:
    overrides: dict = {k: v for k, v in callbacks.items() if v is not None}
    if url:
        overrides["url"] = url
    if token:
        overrides["token"] = token
    if reconnect_interval:
        overrides["reconnect_interval_ms"] = reconnect_interval
    if config_file is not None:
        return ConnectionConfig.from_yaml(config_file, **overrides)
    return ConnectionConfig.from_env(**overrides)


def parse_line(line: str) -> Any:
    """Lines that parse as JSON are sent as JSON values, anything else as a string."""
    try:
        return json.loads(line)
    except ValueError:
        return line


@app.command()
def show(
    url: Optional[str] = typer.Option(None, help="WebSocket endpoint URL"),
    token: Optional[str] = typer.Option(None, help="Auth token appended as ?token="),
    reconnect_interval: Optional[int] = typer.Option(None, help="Reconnect interval in ms"),
    config_file: Optional[Path] = typer.Option(None, "--config", help="YAML config file"),
):
    """Print the resolved connection settings."""
    cfg = _load_config(url, token, reconnect_interval, config_file)
    table = Table(title="Connection settings")
    table.add_column("Setting")
    table.add_column("Value")
    table.add_row("url", cfg.url or "[red]<empty>[/]")
    table.add_row("token", "***" if cfg.token else "[red]<empty>[/]")
    table.add_row("reconnect_interval_ms", str(cfg.reconnect_interval_ms))
    table.add_row("open_timeout", str(cfg.open_timeout))
    console.print(table)


@app.command()
def listen(
    url: str = typer.Option(_default_url(), help="WebSocket endpoint URL"),
    token: str = typer.Option(_default_token(), help="Auth token appended as ?token="),
    reconnect_interval: int = typer.Option(DEFAULT_RECONNECT_INTERVAL_MS, help="Reconnect interval in ms"),
    config_file: Optional[Path] = typer.Option(None, "--config", help="YAML config file"),
    interactive: bool = typer.Option(False, help="Read lines from stdin and send them"),
):
    """Connect, print lifecycle events and inbound messages, reconnect until interrupted."""

    def on_connect(event: Any) -> None:
        console.print(f"[bold green]connected[/] {cfg.url}")

    def on_disconnect(event: Any) -> None:
        code = getattr(event, "code", "?")
        console.print(f"[yellow]disconnected[/] (code {code}); retrying every {cfg.reconnect_interval_ms} ms")

    def on_close() -> None:
        console.print("[dim]closed[/]")

    def on_receive(message: Any) -> None:
        if isinstance(message, str):
            console.print(f"[cyan]recv[/] {message}")
        else:
            console.print(f"[cyan]recv[/] {json.dumps(message)}")

    def on_error(error: dict, event: Any = None) -> None:
        console.print(f"[red]ERROR {error.get('code')}[/]: {error.get('msg')}")

    cfg = _load_config(
        url, token, reconnect_interval, config_file,
        on_connect=on_connect,
        on_disconnect=on_disconnect,
        on_close=on_close,
        on_receive=on_receive,
        on_error=on_error,
    )

    async def main_loop() -> None:
        manager = ConnectionManager(cfg)
        if not manager.connect():
            raise typer.Exit(code=1)
        try:
            if not interactive:
                await asyncio.Future()
            while True:
                line = (await ainput(": ")).strip()
                if not line:
                    continue
                if line in {"/quit", "/exit"}:
                    break
                if line == "/status":
                    console.print(f"status={manager.status()} init={manager.init_status.name}")
                    continue
                manager.send(parse_line(line))
        finally:
            await manager.aclose()

    try:
        asyncio.run(main_loop())
    except KeyboardInterrupt:
        logger.info("Interrupted")


def main() -> None:
    # Third-party loggers (websockets, asyncio) go through the root logger.
    configure_root_logging(os.getenv("WSCONN_LOG_LEVEL", "WARNING"))
    app()


if __name__ == "__main__":
    main()
