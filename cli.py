#!/usr/bin/env python3
"""
warp CLI

Command-line interface for quick LAN file, directory and text transfer.

Usage:
    warp send PATH                 # Share a file or directory
    warp send --text "hello"       # Share a text snippet
    warp host -d uploads           # Receive uploads into a directory
    warp receive URL               # Download from a warp URL
    warp upload URL FILE           # Push a file to a host session
    warp search                    # Discover sessions on the LAN
"""

import asyncio
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import (
    BarColumn, DownloadColumn, Progress, TextColumn, TransferSpeedColumn,
)
from rich.table import Table

from config import Config, load_config
from warp.discovery import browse
from warp.errors import WarpError
from warp.server import TransferServer
from warp.session import Mode, Session
from warp.transfer import TransferProgress, receive, upload
from warp.transfer.protocol import STDOUT_MARKER

console = Console(stderr=True)


def setup_logging(verbose: bool = False, level: str = 'INFO'):
    """Configure logging with rich output."""
    level = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)]
    )


def transfer_progress() -> Progress:
    return Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        DownloadColumn(),
        TransferSpeedColumn(),
        console=console,
    )


def progress_observer(progress: Progress):
    """Adapt a rich Progress into a TransferProgress callback."""
    task_ids = {}

    def update(p: TransferProgress):
        task = task_ids.get(p.file_name)
        if task is None:
            task = progress.add_task(p.file_name, total=p.total, completed=p.resumed_from)
            task_ids[p.file_name] = task
        progress.update(task, completed=p.transferred)

    return update


def run_server(session: Session, config: Config):
    """Serve ``session`` until Ctrl+C."""

    async def run():
        server = TransferServer(session, advertise=config.discovery)
        try:
            url = await server.start()

            console.print(Panel.fit(
                f"[bold green]Serving {session.describe()}[/bold green]\n\n"
                f"Token: [cyan]{session.token}[/cyan]\n"
                f"URL:   [yellow]{url}[/yellow]",
                title="warp host" if session.mode is Mode.HOST else "warp send"
            ))
            if session.mode is Mode.HOST:
                console.print("[dim]Open this URL on another device to upload[/dim]")
            else:
                console.print(f"[dim]Or run: warp receive {url}[/dim]")
            console.print("[dim]Press Ctrl+C to stop[/dim]\n")

            await server.serve_forever()
        finally:
            await server.stop()
            console.print("[green]Server stopped[/green]")

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down...[/yellow]")


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False), default=None,
              help='JSON config file')
@click.pass_context
def cli(ctx, verbose, config_path):
    """warp - a quick file and text transfer."""
    config = load_config(Path(config_path) if config_path else None)
    setup_logging(verbose, config.log_level)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config


@cli.command()
@click.argument('path', required=False, type=click.Path(exists=True))
@click.option('--text', default=None, help='Send a text snippet instead of a file')
@click.option('--stdin', 'from_stdin', is_flag=True, help='Read text from stdin')
@click.option('-p', '--port', type=int, default=None, help='Port (default: random)')
@click.option('--host', 'bind_host', default=None, help='Address to bind')
@click.option('--no-discovery', is_flag=True, help='Do not advertise over mDNS')
@click.pass_context
def send(ctx, path, text, from_stdin, port, bind_host, no_discovery):
    """Share a file, directory, or text snippet."""
    config = ctx.obj['config']
    if no_discovery:
        config.discovery = False
    options = dict(
        host=bind_host or config.host,
        port=config.port if port is None else port,
        settings=config.to_settings(),
    )

    if text is not None:
        session = Session.send_text(text, **options)
    elif from_stdin:
        session = Session.send_text(sys.stdin.read(), **options)
    elif path:
        session = Session.send_path(path, **options)
    else:
        raise click.UsageError("send requires a path, --text, or --stdin")

    run_server(session, config)


@cli.command()
@click.option('-d', '--dest', type=click.Path(file_okay=False), default=None,
              help='Destination directory for uploads (default: .)')
@click.option('-p', '--port', type=int, default=None, help='Port (default: random)')
@click.option('--host', 'bind_host', default=None, help='Address to bind')
@click.option('--no-discovery', is_flag=True, help='Do not advertise over mDNS')
@click.pass_context
def host(ctx, dest, port, bind_host, no_discovery):
    """Receive uploads into a directory you control."""
    config = ctx.obj['config']
    if no_discovery:
        config.discovery = False
    session = Session.host(
        dest or config.upload_dir,
        host=bind_host or config.host,
        port=config.port if port is None else port,
        settings=config.to_settings(),
    )
    run_server(session, config)


@cli.command('receive')
@click.argument('url')
@click.option('-o', '--output', type=click.Path(), default=None,
              help='Write to a specific file or directory')
@click.option('-f', '--force', is_flag=True, help='Overwrite existing files')
def receive_cmd(url, output, force):
    """Download from a warp URL."""

    async def run() -> str:
        with transfer_progress() as progress:
            return await receive(url, output, force, progress_observer(progress))

    try:
        result = asyncio.run(run())
    except WarpError as e:
        console.print(f"[red]✗ {e.message}[/red]")
        sys.exit(1)

    if result == STDOUT_MARKER:
        click.echo()
    else:
        console.print(f"[green]✓ Saved to {result}[/green]")


@cli.command('upload')
@click.argument('url')
@click.argument('file_path', type=click.Path(exists=True, dir_okay=False))
def upload_cmd(url, file_path):
    """Upload a file to a warp host session."""

    async def run() -> dict:
        with transfer_progress() as progress:
            return await upload(url, file_path, progress_observer(progress))

    try:
        result = asyncio.run(run())
    except WarpError as e:
        console.print(f"[red]✗ {e.message}[/red]")
        sys.exit(1)

    console.print(f"[green]✓ Uploaded as {result['filename']} ({result['size']:,} bytes)[/green]")


@cli.command()
@click.option('--timeout', type=float, default=None,
              help='Seconds to wait for discovery (default: 3)')
@click.pass_context
def search(ctx, timeout):
    """Discover nearby warp sessions via mDNS."""
    config = ctx.obj['config']
    records = asyncio.run(browse(timeout or config.discovery_timeout))

    if not records:
        console.print("[yellow]No warp hosts found[/yellow]")
        return

    table = Table(title="Discovered hosts")
    table.add_column("Name", style="cyan")
    table.add_column("Mode", style="magenta")
    table.add_column("URL", style="yellow")
    for record in records:
        table.add_row(record.name, record.mode, record.url)
    console.print(table)


if __name__ == '__main__':
    cli()
