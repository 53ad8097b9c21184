#!/usr/bin/env python3
"""
Command-line entry point for PeerWatch.

- ``run``: join a namespace and keep printing the live peer table
- ``peers``: print one snapshot of a namespace
- ``whoami``: show the address and membership id this host would use
"""

import asyncio
import json
import sys
from typing import Any

import click
from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from peerwatch.config import PeerWatchSettings
from peerwatch.core.logging import configure_logging
from peerwatch.core.model import PeerWatchError
from peerwatch.membership.identity import resolve_local_address
from peerwatch.membership.keys import MembershipKeyCodec
from peerwatch.membership.manager import MembershipManager
from peerwatch.store.etcd_gateway import EtcdGatewayStore
from peerwatch.store.interfaces import CoordinationStore

console = Console()


def _build_store(etcd_url: str) -> CoordinationStore:
    return EtcdGatewayStore(etcd_url)


def _settings(**overrides: Any) -> PeerWatchSettings:
    return PeerWatchSettings(
        **{key: value for key, value in overrides.items() if value is not None}
    )


def _peer_table(title: str, addresses: list[str], local_address: str | None) -> Table:
    table = Table(title=title)
    table.add_column("Address", style="cyan")
    table.add_column("Local", justify="center")
    for address in sorted(addresses):
        table.add_row(address, "*" if address == local_address else "")
    return table


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """
    PeerWatch service membership CLI.

    Registers this host under a namespace on an etcd cluster and shows
    which peers of the same service are alive.
    """
    configure_logging("DEBUG" if verbose else "WARNING", colorize=True)
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


@cli.command()
@click.option("--address", "-a", default=None, help="Explicit host to advertise")
@click.option("--port", "-p", type=int, default=None, help="Advertised port")
@click.option("--namespace", "-n", default=None, help="Membership namespace")
def whoami(address: str | None, port: int | None, namespace: str | None) -> None:
    """Show the local address and membership id."""
    try:
        settings = _settings(address=address, port=port, namespace=namespace)
        local_address = resolve_local_address(
            settings.address or None,
            settings.port,
            probe_host=settings.probe_host,
            probe_port=settings.probe_port,
        )
    except (PeerWatchError, ValueError) as e:
        console.print(f"[red]Cannot resolve identity: {escape(str(e))}[/red]")
        sys.exit(1)

    codec = MembershipKeyCodec(settings.namespace)
    console.print(f"address: {local_address}")
    console.print(f"id:      {codec.key_for(local_address)}")


@cli.command()
@click.option("--etcd-url", "-e", default=None, help="etcd v3 gateway URL")
@click.option("--namespace", "-n", default=None, help="Membership namespace")
@click.option(
    "--output",
    "-o",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format",
)
def peers(etcd_url: str | None, namespace: str | None, output: str) -> None:
    """Print the members currently registered in a namespace."""
    settings = _settings(etcd_url=etcd_url, namespace=namespace)
    codec = MembershipKeyCodec(settings.namespace)

    async def _peers() -> list[str]:
        store = _build_store(settings.etcd_url)
        try:
            records = await store.get_prefix(codec.prefix, timeout=settings.poll_timeout)
        finally:
            await store.close()
        return [codec.address_from_key(record.key) for record in records]

    try:
        addresses = asyncio.run(_peers())
    except Exception as e:
        console.print(f"[red]Snapshot failed: {escape(str(e))}[/red]")
        sys.exit(1)

    if output == "json":
        click.echo(json.dumps(sorted(addresses), indent=2))
    else:
        console.print(_peer_table(f"Members of {settings.namespace}", addresses, None))


@cli.command()
@click.option("--etcd-url", "-e", default=None, help="etcd v3 gateway URL")
@click.option("--namespace", "-n", default=None, help="Membership namespace")
@click.option("--address", "-a", default=None, help="Explicit host to advertise")
@click.option("--port", "-p", type=int, default=None, help="Advertised port")
@click.option("--refresh", type=float, default=5.0, help="Seconds between table refreshes")
@click.option(
    "--duration",
    type=float,
    default=None,
    help="Stop after this many seconds (default: run until interrupted)",
)
@click.pass_context
def run(
    ctx: click.Context,
    etcd_url: str | None,
    namespace: str | None,
    address: str | None,
    port: int | None,
    refresh: float,
    duration: float | None,
) -> None:
    """Join a namespace and keep printing the live peer table."""
    settings = _settings(
        etcd_url=etcd_url, namespace=namespace, address=address, port=port
    )

    async def _run() -> None:
        store = _build_store(settings.etcd_url)
        try:
            manager = MembershipManager(store, settings)
            configure_logging(
                "DEBUG" if ctx.obj["verbose"] else settings.log_level,
                debug_scopes=settings.debug_scopes,
                colorize=True,
                local_id=manager.get_local_id(),
            )
            await manager.start()
        except Exception:
            await store.close()
            raise

        loop = asyncio.get_running_loop()
        deadline = loop.time() + duration if duration is not None else None
        try:
            while True:
                nodes = [node.address for node in manager.get_nodes()]
                status = "healthy" if manager.healthy else "[yellow]reconnecting[/yellow]"
                console.print(
                    _peer_table(
                        f"{manager.get_local_id()} ({status})",
                        nodes,
                        manager.get_local_address(),
                    )
                )
                if deadline is None:
                    await asyncio.sleep(refresh)
                    continue
                remaining = deadline - loop.time()
                if remaining <= 0:
                    return
                await asyncio.sleep(min(refresh, remaining))
        finally:
            await manager.stop()
            await store.close()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        logger.info("Interrupted")
    except PeerWatchError as e:
        console.print(f"[red]Membership failed: {escape(str(e))}[/red]")
        sys.exit(1)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
