"""
Coordination store interface.

The membership layer only needs five primitives from a strongly-consistent
key/value store: lease grant, put bound to a lease, a keep-alive stream, a
prefix watch stream and a prefix read. Connection management, TLS and
RPC-level retries belong to the concrete client.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, runtime_checkable

from peerwatch.datastructures.type_aliases import (
    KeyPrefix,
    LeaseId,
    LeaseTtlSeconds,
    MembershipKey,
    StoreValue,
)


class StoreError(Exception):
    """Base exception for coordination store failures."""

    pass


class StoreTimeoutError(StoreError):
    """Raised when a store request exceeds its timeout."""

    pass


class LeaseNotFoundError(StoreError):
    """Raised when an operation references a lease the store does not know."""

    pass


class WatchEventType(Enum):
    PUT = "put"
    DELETE = "delete"


@dataclass(frozen=True, slots=True)
class Lease:
    lease_id: LeaseId
    ttl: LeaseTtlSeconds


@dataclass(frozen=True, slots=True)
class KeepAliveAck:
    """A successful lease renewal."""

    lease_id: LeaseId
    ttl: LeaseTtlSeconds


@dataclass(frozen=True, slots=True)
class WatchEvent:
    event_type: WatchEventType
    key: MembershipKey


@dataclass(frozen=True, slots=True)
class KeyValue:
    key: MembershipKey
    value: StoreValue
    lease_id: LeaseId | None = None


@runtime_checkable
class CoordinationStore(Protocol):
    """Primitives the membership layer consumes from the coordination store.

    ``keep_alive`` and ``watch`` perform their setup when awaited (and raise
    ``StoreError`` if setup fails), then hand back a stream. A keep-alive
    stream yields ``None`` or ends when the lease is irrecoverably gone.
    """

    async def grant(self, ttl: LeaseTtlSeconds) -> Lease: ...

    async def put(
        self, key: MembershipKey, value: StoreValue, *, lease: LeaseId | None = None
    ) -> None: ...

    async def keep_alive(
        self, lease_id: LeaseId
    ) -> AsyncIterator[KeepAliveAck | None]: ...

    async def watch(self, prefix: KeyPrefix) -> AsyncIterator[WatchEvent]: ...

    async def get_prefix(
        self, prefix: KeyPrefix, *, timeout: float | None = None
    ) -> list[KeyValue]: ...

    async def delete(self, key: MembershipKey) -> None: ...

    async def revoke(self, lease_id: LeaseId) -> None: ...

    async def close(self) -> None: ...
