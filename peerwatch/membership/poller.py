"""Reconciliation poller: periodic full snapshot as a safety net."""

from __future__ import annotations

import asyncio

from loguru import logger

from peerwatch.core.model import MembershipKeyError, SnapshotFetchError
from peerwatch.core.task_manager import TaskManager
from peerwatch.datastructures.type_aliases import Address, DurationSeconds
from peerwatch.store.interfaces import CoordinationStore

from .keys import MembershipKeyCodec
from .table import MembershipTableActor


class ReconciliationPoller:
    """Re-adds every address found in periodic snapshots.

    The poller never removes anything: a partial or stale snapshot, or a
    fetch that timed out, must not evict a live node. Removals come only from
    watch DELETE events.
    """

    def __init__(
        self,
        store: CoordinationStore,
        codec: MembershipKeyCodec,
        actor: MembershipTableActor,
        *,
        interval: DurationSeconds = 5.0,
        timeout: DurationSeconds = 1.0,
        name: str = "ReconciliationPoller",
    ) -> None:
        self.name = name
        self._store = store
        self._codec = codec
        self._actor = actor
        self._interval = interval
        self._timeout = timeout
        self._task_manager = TaskManager(name)
        self._task: asyncio.Task[None] | None = None

        self.cycles = 0
        self.errors = 0

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = self._task_manager.create_task(
            self._poll_forever(), name=f"{self.name}-loop"
        )

    async def stop(self) -> None:
        await self._task_manager.shutdown()

    async def fetch_snapshot(self) -> list[Address]:
        prefix = self._codec.prefix
        try:
            records = await self._store.get_prefix(prefix, timeout=self._timeout)
        except Exception as e:
            raise SnapshotFetchError(f"snapshot of {prefix!r} failed: {e}") from e

        addresses: list[Address] = []
        for record in records:
            try:
                addresses.append(self._codec.address_from_key(record.key))
            except MembershipKeyError as e:
                logger.warning(f"[{self.name}] Skipping snapshot record: {e}")
        return addresses

    async def poll_once(self) -> list[Address]:
        """Fetch one snapshot and submit an add for each address in it."""
        addresses = await self.fetch_snapshot()
        self.cycles += 1
        for address in addresses:
            self._actor.submit_add(address)
        logger.debug(f"[{self.name}] Snapshot returned {len(addresses)} members")
        return addresses

    async def _poll_forever(self) -> None:
        while True:
            try:
                await self.poll_once()
            except SnapshotFetchError as e:
                self.errors += 1
                logger.warning(f"[{self.name}] {e}; retrying next cycle")
            await asyncio.sleep(self._interval)
