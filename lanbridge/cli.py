#!/usr/bin/env python3
"""
LAN Bridge CLI

Command-line interface for the LAN discovery bridge.

Usage:
    lanbridge start                       # Run the bridge
    lanbridge start --target-ip HOST      # Run against a specific server
    lanbridge probe HOST                  # Ask a server for its announcement
    lanbridge show-config                 # Show the effective configuration
    lanbridge init-config                 # Write a config file
"""

import asyncio
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.logging import RichHandler

from .config import AddressConfig, ConfigError, load_config, ANNOUNCE_FORMATS, BEDROCK_PORT
from .bridge import LanBridge, BridgeStartupError
from .discovery import build_probe, decode_announcement, PacketError
from .relay import UpstreamProtocol

console = Console()

DEFAULT_CONFIG_FILE = 'lanbridge.json'


def setup_logging(level: str = 'INFO'):
    """Configure logging with rich output."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=True, show_path=False)],
        force=True,
    )


def parse_address(value: str, default_port: int = BEDROCK_PORT):
    """Parse 'host' or 'host:port'."""
    host, sep, port = value.rpartition(':')
    if not sep:
        return value, default_port
    try:
        return host, int(port)
    except ValueError:
        raise click.BadParameter(f"Invalid port in {value!r} (use host:port)")


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable debug output')
@click.option('-c', '--config', 'config_path', default=DEFAULT_CONFIG_FILE,
              type=click.Path(dir_okay=False), help='JSON config file')
@click.version_option(package_name='lanbridge')
@click.pass_context
def cli(ctx, verbose, config_path):
    """LAN Bridge - show a remote Bedrock server as a LAN game."""
    try:
        config = load_config(Path(config_path))
    except ConfigError as e:
        raise click.UsageError(f"Invalid configuration: {e}")

    if verbose:
        config = config.with_overrides(debug=True)

    setup_logging(config.effective_log_level)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config
    ctx.obj['config_path'] = Path(config_path)


@cli.command()
@click.option('--local-address', help='Address to listen on')
@click.option('--port', 'bind_port', type=int, help='UDP/TCP port to listen on')
@click.option('--target-ip', 'remote_host', help='Remote server host')
@click.option('--target-port', 'remote_port', type=int, help='Remote server port')
@click.option('--name', 'display_name', help='Name shown in the LAN list')
@click.option('--interval', 'broadcast_interval', type=int, help='Seconds between announcements')
@click.option('--format', 'announce_format', type=click.Choice(ANNOUNCE_FORMATS),
              help='Announcement wire layout')
@click.option('--max-sessions', type=int, help='Concurrent session cap (0 = unbounded)')
@click.option('--api-port', type=int, help='Status API port')
@click.option('--no-api', is_flag=True, help='Disable the status API')
@click.pass_context
def start(ctx, local_address, bind_port, remote_host, remote_port, display_name,
          broadcast_interval, announce_format, max_sessions, api_port, no_api):
    """Run the bridge."""
    try:
        config = ctx.obj['config'].with_overrides(
            bind_address=local_address,
            bind_port=bind_port,
            remote_host=remote_host,
            remote_port=remote_port,
            display_name=display_name,
            broadcast_interval=broadcast_interval,
            announce_format=announce_format,
            max_sessions=max_sessions,
            api_port=api_port,
        )
    except ConfigError as e:
        raise click.UsageError(str(e))

    async def run():
        bridge = LanBridge(config)
        await bridge.start()

        try:
            console.print(Panel.fit(
                f"[bold green]LAN Bridge Started[/bold green]\n\n"
                f"Name: [cyan]{config.display_name}[/cyan]\n"
                f"Listening: [yellow]{config.bind_address}:{config.bind_port}[/yellow] (UDP + TCP)\n"
                f"Remote: [yellow]{config.remote_host}:{config.remote_port}[/yellow]\n"
                f"Announcements: [blue]{config.announce_format}[/blue] every "
                f"{config.broadcast_interval}s "
                f"({'on' if bridge.announcer.is_running else '[red]off[/red]'})",
                title="Bridge Info"
            ))

            if not no_api:
                console.print(f"\n[dim]Status API at http://127.0.0.1:{config.api_port}/status[/dim]\n")

                from .api import run_api_server
                await run_api_server(bridge, port=config.api_port)
            else:
                console.print("\n[dim]Press Ctrl+C to stop[/dim]\n")
                await asyncio.Event().wait()
        finally:
            await bridge.stop()
            console.print("[green]Bridge stopped[/green]")

    try:
        asyncio.run(run())
    except BridgeStartupError as e:
        console.print(f"[red]✗ {e}[/red]")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down...[/yellow]")


async def send_probe(host: str, port: int, timeout: float) -> bytes:
    """Send one discovery probe and return the first reply."""
    loop = asyncio.get_running_loop()
    transport, protocol = await loop.create_datagram_endpoint(
        UpstreamProtocol,
        remote_addr=(host, port),
    )
    try:
        transport.sendto(build_probe())
        reply = await asyncio.wait_for(protocol.responses.get(), timeout=timeout)
    finally:
        transport.close()

    if not isinstance(reply, bytes):
        raise ConnectionError(f"No reply from {host}:{port}: {reply}")
    return reply


@cli.command()
@click.argument('address')
@click.option('--timeout', default=2.0, help='Seconds to wait for a reply')
def probe(address, timeout):
    """Send a discovery probe to ADDRESS (host or host:port)."""
    host, port = parse_address(address)

    try:
        reply = asyncio.run(send_probe(host, port, timeout))
    except (OSError, ConnectionError, asyncio.TimeoutError) as e:
        console.print(f"[red]✗ No announcement from {host}:{port}: {e or 'timed out'}[/red]")
        sys.exit(1)

    try:
        announcement = decode_announcement(reply)
    except PacketError as e:
        console.print(f"[red]✗ Unrecognized reply ({len(reply)} bytes): {e}[/red]")
        console.print(f"[dim]{reply.hex()}[/dim]")
        sys.exit(1)

    table = Table(title=f"Announcement from {host}:{port}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="yellow")

    for key, value in announcement.to_dict().items():
        if value is not None:
            table.add_row(key, str(value))
    table.add_row('layout', 'structured' if announcement.is_structured else 'simple')

    console.print(table)


@cli.command('show-config')
@click.pass_context
def show_config(ctx):
    """Show the effective configuration."""
    config = ctx.obj['config']

    table = Table(title=f"Configuration ({ctx.obj['config_path']})")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="yellow")

    for key, value in config.to_dict().items():
        table.add_row(key, str(value))

    console.print(table)


@cli.command('init-config')
@click.option('--force', is_flag=True, help='Overwrite an existing file')
@click.pass_context
def init_config(ctx, force):
    """Write the effective configuration to the config file."""
    path = ctx.obj['config_path']
    config: AddressConfig = ctx.obj['config']

    if path.exists() and not force:
        console.print(f"[yellow]{path} already exists (use --force to overwrite)[/yellow]")
        sys.exit(1)

    config.save(path)
    console.print(f"[green]✓ Wrote {path}[/green]")


if __name__ == '__main__':
    cli()
