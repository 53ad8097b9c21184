"""
PeerWatch coordination store layer.

The membership subsystem consumes a ``CoordinationStore``; this package
provides the interface, an in-process implementation and an etcd v3
gateway client.
"""

from .etcd_gateway import EtcdGatewayStore, prefix_range_end
from .interfaces import (
    CoordinationStore,
    KeepAliveAck,
    KeyValue,
    Lease,
    LeaseNotFoundError,
    StoreError,
    StoreTimeoutError,
    WatchEvent,
    WatchEventType,
)
from .memory import InMemoryCoordinationStore

__all__ = [
    "CoordinationStore",
    "EtcdGatewayStore",
    "InMemoryCoordinationStore",
    "KeepAliveAck",
    "KeyValue",
    "Lease",
    "LeaseNotFoundError",
    "StoreError",
    "StoreTimeoutError",
    "WatchEvent",
    "WatchEventType",
    "prefix_range_end",
]
