"""
PeerWatch Core Module

Core model, error taxonomy, logging and task lifecycle helpers shared by
the membership and store layers.
"""

from .logging import configure_logging
from .model import (
    IdentityResolutionError,
    MembershipKeyError,
    MembershipStatistics,
    MutationEvent,
    MutationKind,
    Node,
    PeerWatchError,
    RegistrationError,
    SnapshotFetchError,
    WatchStreamError,
)
from .task_manager import TaskManager

__all__ = [
    "IdentityResolutionError",
    "MembershipKeyError",
    "MembershipStatistics",
    "MutationEvent",
    "MutationKind",
    "Node",
    "PeerWatchError",
    "RegistrationError",
    "SnapshotFetchError",
    "TaskManager",
    "WatchStreamError",
    "configure_logging",
]
