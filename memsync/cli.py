from __future__ import annotations

import logging

import typer
from rich import print

from .commands.bench_cmds import bench_cmd
from .config import MemsyncConfig, load_config
from .sync_api import run_sync_server

app = typer.Typer(help="memsync: memory guard and sync for in-memory stores")


@app.callback()
def _configure(
    ctx: typer.Context,
    log_level: str = typer.Option(None, help="Logging level (defaults to config)"),
) -> None:
    try:
        config = load_config()
    except ValueError as exc:
        print(f"[red]Invalid configuration: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    ctx.obj = config
    level = log_level or config.log_level
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def bench(
    iterations: int = typer.Option(1000, help="Queries per measured path"),
    min_latency_ms: float = typer.Option(1.0, help="Minimum simulated backend latency"),
    max_latency_ms: float = typer.Option(5.0, help="Maximum simulated backend latency"),
) -> None:
    """Benchmark memory monitor overhead."""

    bench_cmd(
        iterations=iterations,
        min_latency_ms=min_latency_ms,
        max_latency_ms=max_latency_ms,
    )


@app.command()
def serve(
    ctx: typer.Context,
    host: str = typer.Option(None, help="Host to bind"),
    port: int = typer.Option(None, help="Port to bind"),
    db_path: str = typer.Option(None, help="SQLite database for the authoritative store"),
) -> None:
    """Run the reference sync server."""

    config: MemsyncConfig = ctx.obj
    host = host or config.server_host
    port = port if port is not None else config.server_port
    db_path = db_path or config.server_db
    print(f"[green]Sync server[/green] on http://{host}:{port} (store: {db_path or 'memory'})")
    try:
        run_sync_server(
            host,
            port,
            db_path=db_path,
            max_body_bytes=config.server_max_body_bytes,
            max_items=config.server_max_items,
        )
    except KeyboardInterrupt:
        print("Stopped")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
