"""
Membership manager: the query facade over the membership subsystem.

Wiring::

    identity -> LeaseRegistrar -> (coordination store)
                                      |            |
                                ChangeWatcher  ReconciliationPoller
                                      \\            /
                                   MembershipTableActor -> get_nodes()

The local identity is resolved when the manager is built. ``start()``
performs the initial registration, which is fatal on failure; the watcher
and poller start once, from the first successful registration, and keep
running across reconnections.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from loguru import logger

from peerwatch.core.model import MembershipStatistics, Node, PeerWatchError
from peerwatch.datastructures.type_aliases import Address, MembershipKey
from peerwatch.store.interfaces import CoordinationStore

from .identity import resolve_local_address
from .keys import MembershipKeyCodec
from .poller import ReconciliationPoller
from .registrar import LeaseRegistrar
from .table import MembershipTableActor
from .watcher import ChangeWatcher

if TYPE_CHECKING:
    from peerwatch.config import PeerWatchSettings


class MembershipManager:
    """Live view of who this node is and which peers are alive."""

    def __init__(self, store: CoordinationStore, settings: PeerWatchSettings) -> None:
        self.settings = settings
        self._store = store
        self._codec = MembershipKeyCodec(settings.namespace)
        self._local = Node(
            address=resolve_local_address(
                settings.address or None,
                settings.port,
                probe_host=settings.probe_host,
                probe_port=settings.probe_port,
            )
        )
        self._local_id = self._codec.key_for(self._local.address)

        self._actor = MembershipTableActor()
        self._watcher = ChangeWatcher(
            store,
            self._codec,
            self._actor,
            retry_delay=settings.watch_retry_delay,
        )
        self._poller = ReconciliationPoller(
            store,
            self._codec,
            self._actor,
            interval=settings.poll_interval,
            timeout=settings.poll_timeout,
        )
        self._registrar = LeaseRegistrar(
            store,
            self._local_id,
            lease_ttl=settings.lease_ttl,
            backoff_initial=settings.reconnect_backoff_initial,
            backoff_max=settings.reconnect_backoff_max,
            on_first_registration=self._start_background_sync,
        )
        self._started = False
        self._stopped = False

    @classmethod
    async def create(
        cls, store: CoordinationStore, settings: PeerWatchSettings
    ) -> MembershipManager:
        """Build and start a manager; raises if the initial registration fails."""
        manager = cls(store, settings)
        await manager.start()
        return manager

    async def start(self) -> None:
        """Register the local node and start following the namespace.

        A failed start can be retried. A stopped manager cannot be started
        again; build a new one instead.
        """
        if self._stopped:
            raise PeerWatchError(
                f"membership for {self._local_id} was stopped and cannot restart"
            )
        if self._started:
            return
        await self._registrar.register(is_reconnect=False)
        self._actor.start()
        self._started = True
        logger.info(f"Membership started for {self._local_id}")

    async def stop(self, *, deregister: bool = True) -> None:
        """Stop every background activity; optionally revoke the local lease."""
        await self._registrar.stop(revoke=deregister)
        await self._watcher.stop()
        await self._poller.stop()
        await self._actor.stop()
        self._started = False
        self._stopped = True
        logger.info(f"Membership stopped for {self._local_id}")

    async def __aenter__(self) -> MembershipManager:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    def _start_background_sync(self) -> None:
        self._watcher.start()
        self._poller.start()

    # Queries

    def get_nodes(self) -> tuple[Node, ...]:
        return self._actor.nodes()

    def get_local_address(self) -> Address:
        return self._local.address

    def get_local_id(self) -> MembershipKey:
        return self._local_id

    @property
    def local_node(self) -> Node:
        return self._local

    @property
    def healthy(self) -> bool:
        return self._registrar.healthy

    async def fetch_snapshot(self) -> list[Address]:
        """Run one reconciliation poll now and return the addresses it saw."""
        return await self._poller.poll_once()

    async def settle(self) -> None:
        """Wait until every queued mutation has been applied."""
        await self._actor.join()

    def get_statistics(self) -> MembershipStatistics:
        return MembershipStatistics(
            local_id=self._local_id,
            table_size=len(self._actor.nodes()),
            mutations_applied=self._actor.mutations_applied,
            registrations=self._registrar.registrations,
            reconnect_attempts=self._registrar.reconnect_attempts,
            reconnect_failures=self._registrar.reconnect_failures,
            poll_cycles=self._poller.cycles,
            poll_errors=self._poller.errors,
            watch_events=self._watcher.events_seen,
            watch_resubscriptions=self._watcher.resubscriptions,
            healthy=self._registrar.healthy,
        )
