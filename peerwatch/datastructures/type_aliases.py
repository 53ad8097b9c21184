"""
Semantic type aliases for PeerWatch datastructures.

These aliases replace raw ``str``/``int``/``float`` annotations with names
that say what a value means in the membership domain.
"""

from typing import TypeAlias

# Time types
Timestamp: TypeAlias = float
DurationSeconds: TypeAlias = float

# Identity types
Address: TypeAlias = str  # "host:port" of one participant
HostAddress: TypeAlias = str
PortNumber: TypeAlias = int
Namespace: TypeAlias = str
MembershipKey: TypeAlias = str  # "<namespace>_<address>"

# Coordination store types
LeaseId: TypeAlias = int
LeaseTtlSeconds: TypeAlias = int
KeyPrefix: TypeAlias = str
StoreValue: TypeAlias = str
UrlString: TypeAlias = str
