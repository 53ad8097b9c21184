"""
Membership table and the actor that serializes every mutation to it.

The watcher, the poller and anything else that learns about peers never
touch the table directly. They submit ``MutationEvent`` objects to the
``MembershipTableActor`` inbox, and one consumer task applies them in FIFO
order. Readers get an immutable tuple snapshot, so a read never observes a
half-applied mutation and needs no lock.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from dataclasses import dataclass

from loguru import logger

from peerwatch.core.model import MutationEvent, MutationKind, Node
from peerwatch.core.task_manager import TaskManager
from peerwatch.datastructures.type_aliases import Address


@dataclass(slots=True)
class MembershipTable:
    """Set of known nodes, replaced wholesale on every mutation.

    Invariant: no two entries share an address.
    """

    _nodes: tuple[Node, ...] = ()

    def snapshot(self) -> tuple[Node, ...]:
        return self._nodes

    def addresses(self) -> frozenset[Address]:
        return frozenset(node.address for node in self._nodes)

    def contains(self, address: Address) -> bool:
        return any(node.address == address for node in self._nodes)

    def apply(self, event: MutationEvent) -> bool:
        """Apply one mutation. Returns True if the table changed."""
        if event.kind is MutationKind.ADD:
            if self.contains(event.address):
                return False
            self._nodes = (*self._nodes, Node(address=event.address))
            return True

        remaining = tuple(node for node in self._nodes if node.address != event.address)
        changed = len(remaining) != len(self._nodes)
        self._nodes = remaining
        return changed

    def __len__(self) -> int:
        return len(self._nodes)


class MembershipTableActor:
    """Single consumer that owns the ``MembershipTable``.

    ``submit_add`` filters adds at the dispatch point: an add is dropped only
    when the address is already in the table and no other mutation for that
    address is still queued. Without the in-flight check an add submitted
    right after a not-yet-applied remove would be lost.
    """

    def __init__(self, name: str = "MembershipTableActor") -> None:
        self.name = name
        self._table = MembershipTable()
        self._inbox: asyncio.Queue[MutationEvent] = asyncio.Queue()
        self._in_flight: Counter[Address] = Counter()
        self._task_manager = TaskManager(name)
        self._task: asyncio.Task[None] | None = None
        self.mutations_applied = 0
        self.adds_suppressed = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = self._task_manager.create_task(
            self._process_inbox(), name=f"{self.name}-inbox"
        )

    async def stop(self) -> None:
        await self._task_manager.shutdown()

    def submit(self, event: MutationEvent) -> None:
        self._in_flight[event.address] += 1
        self._inbox.put_nowait(event)

    def submit_add(self, address: Address) -> bool:
        """Queue an add unless it is already known and nothing is pending."""
        if self._table.contains(address) and not self._in_flight[address]:
            self.adds_suppressed += 1
            return False
        self.submit(MutationEvent.add(address))
        return True

    def submit_remove(self, address: Address) -> None:
        self.submit(MutationEvent.remove(address))

    def nodes(self) -> tuple[Node, ...]:
        return self._table.snapshot()

    def addresses(self) -> frozenset[Address]:
        return self._table.addresses()

    @property
    def pending(self) -> int:
        return self._inbox.qsize()

    async def join(self) -> None:
        """Wait until every submitted mutation has been applied.

        Waits on the inbox itself, so it never returns while mutations are
        queued and the actor has not been started.
        """
        await self._inbox.join()

    async def _process_inbox(self) -> None:
        while True:
            event = await self._inbox.get()
            try:
                changed = self._table.apply(event)
                self.mutations_applied += 1
                if changed:
                    logger.debug(
                        "[{}] Applied {} {} (size={})",
                        self.name,
                        event.kind.value,
                        event.address,
                        len(self._table),
                    )
            finally:
                self._in_flight[event.address] -= 1
                if self._in_flight[event.address] <= 0:
                    del self._in_flight[event.address]
                self._inbox.task_done()
