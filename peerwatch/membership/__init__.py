"""
PeerWatch membership module.

Self-registration with a liveness lease, watch-driven and poll-reconciled
membership table, and the query facade over both.
"""

from .identity import discover_outbound_host, format_node_address, resolve_local_address
from .keys import KEY_SEPARATOR, MembershipKeyCodec, validate_namespace
from .manager import MembershipManager
from .poller import ReconciliationPoller
from .registrar import LeaseRegistrar
from .table import MembershipTable, MembershipTableActor
from .watcher import ChangeWatcher

__all__ = [
    "KEY_SEPARATOR",
    "ChangeWatcher",
    "LeaseRegistrar",
    "MembershipKeyCodec",
    "MembershipManager",
    "MembershipTable",
    "MembershipTableActor",
    "ReconciliationPoller",
    "discover_outbound_host",
    "format_node_address",
    "resolve_local_address",
    "validate_namespace",
]
