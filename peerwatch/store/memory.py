"""
In-process coordination store with lease, watch and keep-alive semantics.

``InMemoryCoordinationStore`` behaves like a single etcd member from the
point of view of the membership layer: keys can be bound to leases, lease
loss deletes the bound keys and is reported to watchers as DELETE events,
and keep-alive streams deliver ``None`` once their lease is gone. Lease
expiry is driven explicitly (``expire_lease`` / ``reap_expired``) so tests
stay deterministic.
"""

from __future__ import annotations

import asyncio
import itertools
import time
from collections import Counter, defaultdict, deque
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field

from loguru import logger

from peerwatch.datastructures.type_aliases import (
    DurationSeconds,
    KeyPrefix,
    LeaseId,
    LeaseTtlSeconds,
    MembershipKey,
    StoreValue,
    Timestamp,
)

from .interfaces import (
    KeepAliveAck,
    KeyValue,
    Lease,
    LeaseNotFoundError,
    StoreTimeoutError,
    WatchEvent,
    WatchEventType,
)


@dataclass(slots=True)
class _LeaseState:
    lease_id: LeaseId
    ttl: LeaseTtlSeconds
    expires_at: Timestamp
    keys: set[MembershipKey] = field(default_factory=set)
    lost: asyncio.Event = field(default_factory=asyncio.Event)


@dataclass(eq=False, slots=True)
class InMemoryCoordinationStore:
    """Deterministic coordination store for tests and local demos."""

    keepalive_interval: DurationSeconds | None = None
    get_latency: DurationSeconds = 0.0
    clock: Callable[[], Timestamp] = time.monotonic
    operation_counts: Counter[str] = field(default_factory=Counter)
    _kv: dict[MembershipKey, KeyValue] = field(default_factory=dict)
    _leases: dict[LeaseId, _LeaseState] = field(default_factory=dict)
    _watchers: list[tuple[KeyPrefix, asyncio.Queue[WatchEvent | None]]] = field(
        default_factory=list
    )
    _failures: dict[str, deque[Exception]] = field(
        default_factory=lambda: defaultdict(deque)
    )
    _lease_ids: itertools.count[int] = field(
        default_factory=lambda: itertools.count(1)
    )

    # Fault injection

    def inject_failure(
        self, operation: str, error: Exception, *, times: int = 1
    ) -> None:
        """Make the next ``times`` calls of ``operation`` raise ``error``."""
        self._failures[operation].extend([error] * times)

    def _enter(self, operation: str) -> None:
        self.operation_counts[operation] += 1
        pending = self._failures.get(operation)
        if pending:
            raise pending.popleft()

    # Store primitives

    async def grant(self, ttl: LeaseTtlSeconds) -> Lease:
        self._enter("grant")
        lease_id = next(self._lease_ids)
        self._leases[lease_id] = _LeaseState(
            lease_id=lease_id, ttl=ttl, expires_at=self.clock() + ttl
        )
        logger.debug("Granted lease {} ttl={}s", lease_id, ttl)
        return Lease(lease_id=lease_id, ttl=ttl)

    async def put(
        self, key: MembershipKey, value: StoreValue, *, lease: LeaseId | None = None
    ) -> None:
        self._enter("put")
        if lease is not None and lease not in self._leases:
            raise LeaseNotFoundError(f"lease {lease} not found")

        previous = self._kv.get(key)
        if previous is not None and previous.lease_id in self._leases:
            self._leases[previous.lease_id].keys.discard(key)
        if lease is not None:
            self._leases[lease].keys.add(key)

        self._kv[key] = KeyValue(key=key, value=value, lease_id=lease)
        self._emit(WatchEvent(event_type=WatchEventType.PUT, key=key))

    async def keep_alive(self, lease_id: LeaseId) -> AsyncIterator[KeepAliveAck | None]:
        self._enter("keep_alive")
        state = self._leases.get(lease_id)
        if state is None:
            raise LeaseNotFoundError(f"lease {lease_id} not found")
        return self._keep_alive_stream(state)

    async def _keep_alive_stream(
        self, state: _LeaseState
    ) -> AsyncIterator[KeepAliveAck | None]:
        interval = self.keepalive_interval or state.ttl / 3
        while True:
            lost = True
            try:
                async with asyncio.timeout(interval):
                    await state.lost.wait()
            except TimeoutError:
                lost = state.lost.is_set()
            if lost:
                yield None
                return
            state.expires_at = self.clock() + state.ttl
            yield KeepAliveAck(lease_id=state.lease_id, ttl=state.ttl)

    async def watch(self, prefix: KeyPrefix) -> AsyncIterator[WatchEvent]:
        self._enter("watch")
        queue: asyncio.Queue[WatchEvent | None] = asyncio.Queue()
        subscription = (prefix, queue)
        self._watchers.append(subscription)
        return self._watch_stream(subscription)

    async def _watch_stream(
        self, subscription: tuple[KeyPrefix, asyncio.Queue[WatchEvent | None]]
    ) -> AsyncIterator[WatchEvent]:
        _, queue = subscription
        try:
            while True:
                event = await queue.get()
                if event is None:
                    return
                yield event
        finally:
            if subscription in self._watchers:
                self._watchers.remove(subscription)

    async def get_prefix(
        self, prefix: KeyPrefix, *, timeout: float | None = None
    ) -> list[KeyValue]:
        self._enter("get_prefix")
        try:
            async with asyncio.timeout(timeout):
                if self.get_latency:
                    await asyncio.sleep(self.get_latency)
        except TimeoutError as e:
            raise StoreTimeoutError(
                f"range request for {prefix!r} exceeded {timeout}s"
            ) from e
        return [kv for key, kv in sorted(self._kv.items()) if key.startswith(prefix)]

    async def delete(self, key: MembershipKey) -> None:
        self._enter("delete")
        self._delete_key(key)

    async def revoke(self, lease_id: LeaseId) -> None:
        self._enter("revoke")
        if lease_id not in self._leases:
            raise LeaseNotFoundError(f"lease {lease_id} not found")
        self._drop_lease(lease_id)

    async def close(self) -> None:
        self.close_watches()

    # Simulation controls

    def expire_lease(self, lease_id: LeaseId) -> bool:
        """Expire a lease as if its TTL ran out without renewal."""
        if lease_id not in self._leases:
            return False
        logger.debug("Lease {} expired", lease_id)
        self._drop_lease(lease_id)
        return True

    def reap_expired(self) -> list[LeaseId]:
        """Expire every lease whose deadline has passed."""
        now = self.clock()
        expired = [
            lease_id
            for lease_id, state in self._leases.items()
            if state.expires_at <= now
        ]
        for lease_id in expired:
            self.expire_lease(lease_id)
        return expired

    def restart(self, *, close_watches: bool = True) -> None:
        """Simulate a store restart: every lease and key is lost."""
        for lease_id in list(self._leases):
            self._drop_lease(lease_id)
        for key in list(self._kv):
            self._delete_key(key)
        if close_watches:
            self.close_watches()

    def close_watches(self) -> None:
        """Terminate every open watch stream."""
        for _, queue in self._watchers:
            queue.put_nowait(None)
        self._watchers.clear()

    def active_leases(self) -> list[LeaseId]:
        return sorted(self._leases)

    def keys(self) -> list[MembershipKey]:
        return sorted(self._kv)

    def lease_of(self, key: MembershipKey) -> LeaseId | None:
        kv = self._kv.get(key)
        return kv.lease_id if kv is not None else None

    @property
    def watcher_count(self) -> int:
        return len(self._watchers)

    # Internals

    def _drop_lease(self, lease_id: LeaseId) -> None:
        state = self._leases.pop(lease_id)
        for key in sorted(state.keys):
            self._delete_key(key)
        state.lost.set()

    def _delete_key(self, key: MembershipKey) -> None:
        kv = self._kv.pop(key, None)
        if kv is None:
            return
        if kv.lease_id is not None and kv.lease_id in self._leases:
            self._leases[kv.lease_id].keys.discard(key)
        self._emit(WatchEvent(event_type=WatchEventType.DELETE, key=key))

    def _emit(self, event: WatchEvent) -> None:
        for prefix, queue in self._watchers:
            if event.key.startswith(prefix):
                queue.put_nowait(event)
