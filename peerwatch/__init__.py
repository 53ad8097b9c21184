"""
PeerWatch - lease-based service membership on a coordination store

PeerWatch keeps a live, eventually-consistent view of the peers of a
service. Each process registers itself under a namespace with a short
liveness lease, and learns about the others through a prefix watch backed
by a periodic reconciliation poll.

## Quick Start

```python
from peerwatch import MembershipManager, PeerWatchSettings
from peerwatch.store import EtcdGatewayStore

store = EtcdGatewayStore("http://127.0.0.1:2379")
settings = PeerWatchSettings(namespace="svc", port=9000)

async with MembershipManager(store, settings) as membership:
    print(membership.get_local_id())
    print([node.address for node in membership.get_nodes()])
```
"""

from .config import PeerWatchSettings
from .core import (
    IdentityResolutionError,
    MembershipStatistics,
    MutationEvent,
    MutationKind,
    Node,
    PeerWatchError,
    RegistrationError,
    SnapshotFetchError,
    WatchStreamError,
)
from .membership import MembershipKeyCodec, MembershipManager

__version__ = "0.1.0"

__all__ = [
    "IdentityResolutionError",
    "MembershipKeyCodec",
    "MembershipManager",
    "MembershipStatistics",
    "MutationEvent",
    "MutationKind",
    "Node",
    "PeerWatchError",
    "PeerWatchSettings",
    "RegistrationError",
    "SnapshotFetchError",
    "WatchStreamError",
    "__version__",
]
