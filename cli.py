#!/usr/bin/env python3
"""
tcpshare CLI

Command-line interface for the LIST/GET file transfer server and client.

Usage:
    python cli.py serve --dir ./shared_files     # Share a directory
    python cli.py list --host 10.0.0.5           # List remote files
    python cli.py get a.txt b.bin --output ./dl  # Download files
"""

import asyncio
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn
from rich.panel import Panel
from rich.logging import RichHandler

from config import load_config
from tcpshare import TransferController, ServerEngine, TransferError
from tcpshare.transfer import ClientConnected, ClientDisconnected, FileSent

console = Console()


def setup_logging(verbose: bool = False, level_name: str = 'INFO'):
    """Configure logging with rich output."""
    level = logging.DEBUG if verbose else getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)]
    )


def format_size(bytes_count: int) -> str:
    """Format bytes as human-readable size."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024
    return f"{bytes_count:.1f} PB"


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False),
              default=None, help='JSON config file')
@click.pass_context
def cli(ctx, verbose, config_path):
    """tcpshare - share a directory over TCP, fetch files with LIST/GET."""
    config = load_config(Path(config_path) if config_path else None)
    setup_logging(verbose, config.log_level)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config


@cli.command()
@click.option('--port', '-p', type=int, default=None, help='TCP port to listen on')
@click.option('--dir', 'shared_dir', type=click.Path(file_okay=False), default=None,
              help='Directory to share')
@click.pass_context
def serve(ctx, port, shared_dir):
    """Share a directory until Ctrl+C."""
    config = ctx.obj['config']
    if port is not None:
        config.port = port
    if shared_dir is not None:
        config.shared_dir = Path(shared_dir)

    async def run():
        server = ServerEngine(host=config.host, chunk_size=config.chunk_size)

        def on_event(event):
            if isinstance(event, ClientConnected):
                console.print(f"[green]+[/green] {event.peer}")
            elif isinstance(event, ClientDisconnected):
                console.print(f"[dim]- {event.peer}[/dim]")
            elif isinstance(event, FileSent):
                console.print(f"[cyan]Sent {event.name}[/cyan] ({format_size(event.size)})")

        server.on_event(on_event)

        try:
            await server.start(config.port, config.shared_dir)
        except (FileNotFoundError, TransferError) as e:
            console.print(f"[red]{e}[/red]")
            return 1

        files = await server.get_file_list()
        console.print(Panel.fit(
            f"[bold green]File Server Started[/bold green]\n\n"
            f"Address: [yellow]{config.host}:{server.port}[/yellow]\n"
            f"Shared Dir: [blue]{config.shared_dir}[/blue]\n"
            f"Files: [yellow]{len(files)}[/yellow]",
            title="Server Info"
        ))
        console.print("\n[dim]Press Ctrl+C to stop[/dim]\n")

        try:
            while True:
                await asyncio.sleep(1)
        finally:
            await server.stop()
            console.print("[green]Server stopped[/green]")

    try:
        sys.exit(asyncio.run(run()))
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down...[/yellow]")


@cli.command('list')
@click.option('--host', '-H', default=None, help='Server address')
@click.option('--port', '-p', type=int, default=None, help='Server port')
@click.pass_context
def list_files(ctx, host, port):
    """List files offered by a server."""
    config = ctx.obj['config']
    controller = TransferController(
        server_host=host or config.server_host,
        server_port=port or config.port,
        download_dir=config.download_dir,
        connect_timeout=config.connect_timeout,
        max_list_size=config.max_list_size,
    )

    async def run():
        try:
            await controller.connect()
            files = await controller.refresh()
        except TransferError as e:
            console.print(f"[red]{e}[/red]")
            return 1
        finally:
            await controller.disconnect()

        if not files:
            console.print("[yellow]No shared files[/yellow]")
            return 0

        table = Table(title=f"Files on {controller.server_host}:{controller.server_port}")
        table.add_column("Name", style="cyan")
        table.add_column("Size", justify="right", style="yellow")

        for f in files:
            table.add_row(f.name, format_size(f.size))

        console.print(table)
        return 0

    sys.exit(asyncio.run(run()))


@cli.command()
@click.argument('names', nargs=-1, required=True)
@click.option('--host', '-H', default=None, help='Server address')
@click.option('--port', '-p', type=int, default=None, help='Server port')
@click.option('--output', '-o', type=click.Path(file_okay=False), default=None,
              help='Download directory')
@click.pass_context
def get(ctx, names, host, port, output):
    """Download one or more files, one after another."""
    config = ctx.obj['config']
    controller = TransferController(
        server_host=host or config.server_host,
        server_port=port or config.port,
        download_dir=Path(output) if output else config.download_dir,
        connect_timeout=config.connect_timeout,
        max_list_size=config.max_list_size,
    )

    async def run():
        try:
            await controller.connect()
        except TransferError as e:
            console.print(f"[red]{e}[/red]")
            return 1

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            console=console,
        ) as progress:
            task = progress.add_task("Starting...", total=100)

            def update_progress(c):
                description = (f"Downloading {c.current_download}..."
                               if c.current_download else c.status_message)
                progress.update(task, completed=c.overall_progress, description=description)

            controller.on_change(update_progress)
            try:
                completed = await controller.download(list(names))
            finally:
                await controller.disconnect()

        for path in completed:
            console.print(f"[green]✓ Downloaded to: {path}[/green]")

        failed = [f.name for f in controller.get_files()
                  if f.name in names and f.status != 'complete']
        for name in failed:
            console.print(f"[red]✗ {name} failed[/red]")
        if controller.error_message:
            console.print(f"[dim]{controller.error_message}[/dim]")
        return 1 if failed else 0

    sys.exit(asyncio.run(run()))


if __name__ == '__main__':
    cli()
