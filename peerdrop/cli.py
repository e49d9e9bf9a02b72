#!/usr/bin/env python3
"""
peerdrop CLI

Command-line interface for serverless LAN file drop.

Usage:
    peerdrop receive                 # Listen and save incoming files
    peerdrop send PEER FILE...       # Push files to host:port
    peerdrop share FILE...           # Store files and serve share links
    peerdrop serve                   # Serve the share API
    peerdrop list                    # List stored files
    peerdrop delete ID               # Remove a stored file
    peerdrop config --example        # Print a config file template
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import aiofiles
import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .config import EXAMPLE_CONFIG, Config, load_config
from .errors import PeerDropError, StoreIOError
from .file.descriptor import OutgoingFile, guess_mime_type
from .node import PeerNode
from .storage import ContentStore, SQLiteDurableStore

console = Console()


def setup_logging(verbose: bool = False, level: str = 'INFO'):
    """Configure logging with rich output."""
    log_level = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)]
    )


def open_store(config: Config) -> ContentStore:
    """Content store over the SQLite tier in the data directory."""
    durable = SQLiteDurableStore(config.store_db_path, config.store_index_path)
    return ContentStore(durable, durable_max_bytes=config.durable_max_bytes)


def share_url(config: Config, file_id: str) -> str:
    host = config.api_host
    if host in ('0.0.0.0', '::', ''):
        host = 'localhost'
    return f"http://{host}:{config.api_port}/files/{file_id}/download"


def format_size(bytes_count: int) -> str:
    """Format bytes as human-readable size."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024
    return f"{bytes_count:.1f} PB"


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False), help='Config file (JSON)')
@click.option('--data-dir', default=None, help='Data directory')
@click.option('--port', default=None, type=int, help='Transfer TCP port')
@click.pass_context
def cli(ctx, verbose, config_path, data_dir, port):
    """peerdrop - Send files straight to another device on your network."""
    config = load_config(Path(config_path) if config_path else None)
    if data_dir:
        config.data_dir = Path(data_dir)
    if port is not None:
        config.port = port

    setup_logging(verbose, config.log_level)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config


# === Direct transfer ===

@cli.command()
@click.option('--output', '-o', type=click.Path(file_okay=False), help='Download directory')
@click.pass_context
def receive(ctx, output):
    """Listen for peers and save the files they send."""
    config: Config = ctx.obj['config']
    if output:
        config.download_dir = Path(output)

    async def run():
        node = PeerNode(config)

        def file_saved(peer_id, received, path):
            console.print(f"[green]✓[/green] {received.name} "
                          f"([yellow]{format_size(received.size)}[/yellow]) from {peer_id} → {path}")

        def transfer_complete(peer_id, descriptors):
            console.print(f"[bold green]Transfer from {peer_id} complete[/bold green] "
                          f"({len(descriptors)} files)")

        def peer_error(peer_id, error):
            console.print(f"[red]✗ {peer_id}: {error}[/red]")

        node.on_file_saved(file_saved)
        node.on_transfer_complete(transfer_complete)
        node.on_peer_error(peer_error)

        try:
            await node.start()

            console.print(Panel.fit(
                f"[bold green]Ready to Receive[/bold green]\n\n"
                f"Node ID: [cyan]{node.node_id}[/cyan]\n"
                f"Peer ID: [yellow]{node.peer_id}[/yellow]\n"
                f"Downloads: [blue]{node.download_dir}[/blue]",
                title="peerdrop"
            ))
            console.print("\n[dim]Press Ctrl+C to stop[/dim]\n")
            while True:
                await asyncio.sleep(1)

        except KeyboardInterrupt:
            console.print("\n[yellow]Shutting down...[/yellow]")
        finally:
            await node.stop()
            console.print("[green]Node stopped[/green]")

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("[dim]Interrupted[/dim]")


@cli.command()
@click.argument('peer')
@click.argument('files', nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def send(ctx, peer, files):
    """Send FILES to PEER (host:port)."""
    config: Config = ctx.obj['config']

    async def run() -> bool:
        node = PeerNode(config, auto_receive=False)
        outgoing = [OutgoingFile.from_path(Path(f)) for f in files]

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            console=console,
        ) as progress:
            tasks = [
                progress.add_task(f.descriptor.name, total=100)
                for f in outgoing
            ]

            def update_progress(file_index, percent):
                progress.update(tasks[file_index], completed=percent)

            try:
                session = await node.send_outgoing(peer, outgoing, update_progress)
            except (PeerDropError, ValueError) as e:
                console.print(f"\n[red]✗ Transfer failed: {e}[/red]")
                return False

        stats = session.get_stats()
        console.print(f"\n[green]✓ Sent {len(outgoing)} files "
                      f"({stats['chunks_sent']} chunks) to {peer}[/green]")
        return True

    if not asyncio.run(run()):
        sys.exit(1)


# === Share links ===

@cli.command()
@click.argument('files', nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option('--no-serve', is_flag=True, help='Store only, do not start the share API')
@click.option('--api-port', default=None, type=int, help='Share API port')
@click.pass_context
def share(ctx, files, no_serve, api_port):
    """Store FILES and serve them by link."""
    config: Config = ctx.obj['config']
    if api_port is not None:
        config.api_port = api_port

    async def run():
        store = open_store(config)
        await store.open()

        try:
            for file_path in files:
                path = Path(file_path)
                async with aiofiles.open(path, 'rb') as f:
                    data = await f.read()

                file_id = store.put(path.name, guess_mime_type(path.name), data)
                try:
                    await store.wait_durable(file_id)
                except StoreIOError as e:
                    console.print(f"[yellow]{path.name} is shared from memory only: {e}[/yellow]")

                console.print(
                    f"[cyan]{path.name}[/cyan] ([yellow]{format_size(len(data))}[/yellow]) "
                    f"→ [green]{share_url(config, file_id)}[/green]",
                    soft_wrap=True,
                )

            if not no_serve:
                console.print(f"\n[dim]Share API at http://localhost:{config.api_port}[/dim]")
                console.print("[dim]Press Ctrl+C to stop sharing[/dim]\n")

                from .api import run_api_server
                await run_api_server(store, host=config.api_host, port=config.api_port)
        finally:
            await store.close()

    asyncio.run(run())


@cli.command()
@click.option('--api-port', default=None, type=int, help='Share API port')
@click.pass_context
def serve(ctx, api_port):
    """Serve the share API over stored files."""
    config: Config = ctx.obj['config']
    if api_port is not None:
        config.api_port = api_port

    async def run():
        console.print(f"[dim]Share API at http://localhost:{config.api_port}[/dim]")
        console.print(f"[dim]API docs at http://localhost:{config.api_port}/docs[/dim]\n")

        from .api import run_api_server
        await run_api_server(open_store(config), host=config.api_host,
                             port=config.api_port, owns_store=True)

    asyncio.run(run())


@cli.command('list')
@click.pass_context
def list_files(ctx):
    """List stored files."""
    config: Config = ctx.obj['config']

    async def run():
        store = open_store(config)
        await store.open()

        try:
            summaries = store.list()
            if not summaries:
                console.print("[yellow]No stored files[/yellow]")
                return

            table = Table(title="Stored Files")
            table.add_column("ID", style="green")
            table.add_column("Name", style="cyan")
            table.add_column("Size", justify="right", style="yellow")
            table.add_column("Type")
            table.add_column("Bytes", justify="center")

            for s in summaries:
                record = store.get(s.id)
                table.add_row(
                    s.id,
                    s.name,
                    format_size(s.size),
                    s.type or "-",
                    "✓" if record is not None and record.has_data else "[red]✗[/red]",
                )

            console.print(table)
        finally:
            await store.close()

    asyncio.run(run())


@cli.command()
@click.argument('file_id')
@click.pass_context
def delete(ctx, file_id):
    """Remove a stored file."""
    config: Config = ctx.obj['config']

    async def run() -> Optional[bool]:
        store = open_store(config)
        await store.open()
        try:
            return await store.delete(file_id)
        except StoreIOError as e:
            console.print(f"[red]✗ Delete failed: {e}[/red]")
            return None
        finally:
            await store.close()

    removed = asyncio.run(run())
    if removed:
        console.print(f"[green]✓ Deleted {file_id}[/green]")
    elif removed is False:
        console.print(f"[yellow]No stored file {file_id}[/yellow]")
        sys.exit(1)
    else:
        sys.exit(1)


# === Configuration ===

@cli.command('config')
@click.option('--example', is_flag=True, help='Print a config file template instead')
@click.pass_context
def show_config(ctx, example):
    """Show the effective configuration as JSON."""
    if example:
        click.echo(EXAMPLE_CONFIG.strip())
        return

    config: Config = ctx.obj['config']
    click.echo(json.dumps(config.to_dict(), indent=2))


if __name__ == '__main__':
    cli()
