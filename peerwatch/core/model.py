"""Core membership model: nodes, mutation events, statistics and errors."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from peerwatch.datastructures.type_aliases import Address


@dataclass(frozen=True, slots=True)
class Node:
    """One participant, identified by its network address."""

    address: Address


class MutationKind(Enum):
    """Kinds of membership mutation accepted by the table actor."""

    ADD = "add"
    REMOVE = "remove"


@dataclass(frozen=True, slots=True)
class MutationEvent:
    """A single add/remove request travelling through the actor inbox."""

    kind: MutationKind
    address: Address

    @classmethod
    def add(cls, address: Address) -> MutationEvent:
        return cls(kind=MutationKind.ADD, address=address)

    @classmethod
    def remove(cls, address: Address) -> MutationEvent:
        return cls(kind=MutationKind.REMOVE, address=address)


@dataclass(frozen=True, slots=True)
class MembershipStatistics:
    """Point-in-time counters for a running membership manager."""

    local_id: str
    table_size: int
    mutations_applied: int
    registrations: int
    reconnect_attempts: int
    reconnect_failures: int
    poll_cycles: int
    poll_errors: int
    watch_events: int
    watch_resubscriptions: int
    healthy: bool


class PeerWatchError(Exception):
    """Base exception for membership errors."""

    pass


class IdentityResolutionError(PeerWatchError):
    """Raised when no outbound route exists to discover the local address."""

    pass


class RegistrationError(PeerWatchError):
    """Raised when lease grant, record write or keep-alive setup fails."""

    pass


class WatchStreamError(PeerWatchError):
    """Raised when the membership watch subscription ends or fails."""

    pass


class SnapshotFetchError(PeerWatchError):
    """Raised when a reconciliation snapshot cannot be fetched in time."""

    pass


class MembershipKeyError(PeerWatchError, ValueError):
    """Raised for malformed namespaces or keys outside the namespace."""

    pass
