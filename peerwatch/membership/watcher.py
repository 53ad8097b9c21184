"""Change watcher: turns store watch events into membership mutations."""

from __future__ import annotations

import asyncio

from loguru import logger

from peerwatch.core.model import MembershipKeyError, WatchStreamError
from peerwatch.core.task_manager import TaskManager
from peerwatch.datastructures.type_aliases import DurationSeconds
from peerwatch.store.interfaces import CoordinationStore, WatchEvent, WatchEventType

from .keys import MembershipKeyCodec
from .table import MembershipTableActor


class ChangeWatcher:
    """Subscribes to the namespace prefix and feeds the table actor.

    PUT events become adds (filtered at the dispatch point), DELETE events,
    including lease-expiry deletions, become removes. Events are forwarded
    one by one in stream order. A terminated subscription is re-established
    after ``retry_delay``.
    """

    def __init__(
        self,
        store: CoordinationStore,
        codec: MembershipKeyCodec,
        actor: MembershipTableActor,
        *,
        retry_delay: DurationSeconds = 1.0,
        name: str = "ChangeWatcher",
    ) -> None:
        self.name = name
        self._store = store
        self._codec = codec
        self._actor = actor
        self._retry_delay = retry_delay
        self._task_manager = TaskManager(name)
        self._task: asyncio.Task[None] | None = None

        self.subscriptions = 0
        self.resubscriptions = 0
        self.events_seen = 0
        self.events_ignored = 0

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = self._task_manager.create_task(
            self._watch_forever(), name=f"{self.name}-stream"
        )

    async def stop(self) -> None:
        await self._task_manager.shutdown()

    def dispatch(self, event: WatchEvent) -> None:
        try:
            address = self._codec.address_from_key(event.key)
        except MembershipKeyError as e:
            self.events_ignored += 1
            logger.warning(f"[{self.name}] Ignoring watch event: {e}")
            return

        self.events_seen += 1
        if event.event_type is WatchEventType.PUT:
            self._actor.submit_add(address)
        else:
            self._actor.submit_remove(address)

    async def consume_once(self) -> None:
        """Subscribe once and dispatch events until the subscription ends.

        Always finishes by raising ``WatchStreamError``.
        """
        prefix = self._codec.prefix
        try:
            stream = await self._store.watch(prefix)
        except Exception as e:
            raise WatchStreamError(f"cannot watch {prefix!r}: {e}") from e

        self.subscriptions += 1
        logger.debug(f"[{self.name}] Watching {prefix!r}")
        try:
            async for event in stream:
                self.dispatch(event)
        except Exception as e:
            raise WatchStreamError(f"watch on {prefix!r} failed: {e}") from e
        raise WatchStreamError(f"watch on {prefix!r} ended")

    async def _watch_forever(self) -> None:
        while True:
            try:
                await self.consume_once()
            except WatchStreamError as e:
                logger.warning(
                    f"[{self.name}] {e}; resubscribing in {self._retry_delay}s"
                )
            await asyncio.sleep(self._retry_delay)
            self.resubscriptions += 1
