#!/usr/bin/env python3
"""
Metadata Relay CLI entrypoint
"""

import asyncio
import signal
from typing import List, Optional
import typer
from rich.console import Console
from rich.table import Table
from rich.progress import Progress, SpinnerColumn, TextColumn
from loguru import logger

from metadata_relay import Scheduler, load_config
from metadata_relay.clients import RegistryClient
from metadata_relay.config import Config
from metadata_relay.errors import ConfigError, RegistryUnavailable
from metadata_relay.logs import configure_logging

app = typer.Typer(help="Metadata Relay - marketplace metadata sync worker")
console = Console()


def _load() -> Config:
    try:
        config = load_config()
    except ConfigError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        raise typer.Exit(code=1)
    configure_logging(config.log_level, config.log_json)
    return config


@app.command()
def run():
    """Run the worker until SIGINT/SIGTERM"""
    config = _load()

    async def main():
        scheduler = Scheduler.from_config(config)
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, scheduler.request_stop)
            except NotImplementedError:
                # Windows event loops have no signal handlers
                pass
        await scheduler.run()

    try:
        asyncio.run(main())
    except (ConfigError, RegistryUnavailable) as e:
        logger.error(f"Worker failed to start: {e}")
        raise typer.Exit(code=1)


@app.command()
def sweep(
    project: Optional[List[str]] = typer.Option(None, "--project", "-p", help="Only sweep these projects"),
):
    """Run a single sweep and exit"""
    config = _load()

    async def sweep_once():
        scheduler = Scheduler.from_config(config)
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            task = progress.add_task("Sweeping projects...", total=None)
            outcome = await scheduler.run_once(project)
            progress.update(task, completed=True)

        table = Table(title="Sweep")
        table.add_column("Project", style="cyan")
        table.add_column("Completed", style="green")
        for project_id, ok in sorted(outcome.items()):
            table.add_row(project_id, "yes" if ok else "[red]no[/red]")
        console.print(table)

        metrics = scheduler.metrics.snapshot()
        console.print(
            f"\n[bold green]{int(metrics['tokens_processed'])} tokens processed, "
            f"{int(metrics['messages_published'])} messages published[/bold green]"
        )

    try:
        asyncio.run(sweep_once())
    except (ConfigError, RegistryUnavailable) as e:
        console.print(f"[bold red]Sweep failed:[/bold red] {e}")
        raise typer.Exit(code=1)


@app.command()
def projects():
    """List the projects the registry publishes"""
    config = _load()

    async def list_projects():
        async with RegistryClient(config) as registry:
            return await registry.list_projects()

    try:
        found = asyncio.run(list_projects())
    except RegistryUnavailable as e:
        console.print(f"[bold red]Registry unavailable:[/bold red] {e}")
        raise typer.Exit(code=1)

    table = Table(title=f"Projects on {config.chain_id}")
    table.add_column("Project", style="cyan")
    table.add_column("Indexer", style="magenta")
    table.add_column("World", style="yellow")
    table.add_column("Ignored", style="white")
    for p in found:
        table.add_row(p.id, p.indexer_url, p.world_address or "-", "yes" if p.ignored else "")
    console.print(table)


@app.command("check-config")
def check_config():
    """Validate the environment and print the effective settings"""
    config = _load()
    table = Table(title="Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="white")
    rows = [
        ("chain", config.chain_id),
        ("account", config.account_address),
        ("marketplace", config.marketplace_address),
        ("marketplace indexer", config.marketplace_url),
        ("registry", config.registry.registry_url),
        ("token fetch batch", str(config.token_fetch_batch_size)),
        ("message batch", str(config.message_batch_size)),
        ("token concurrency", str(config.processing_concurrency)),
        ("retries", f"{config.retry_attempts} x {config.retry_delay}s"),
        ("interval", f"{config.fetch_interval} min"),
        ("ignored", ", ".join(config.effective_ignored_projects)),
    ]
    for name, value in rows:
        table.add_row(name, value)
    console.print(table)


if __name__ == "__main__":
    app()
