"""
PeerWatch datastructures module.

Shared semantic aliases used across the membership and store layers.
"""

from __future__ import annotations

from .type_aliases import (
    Address,
    DurationSeconds,
    HostAddress,
    KeyPrefix,
    LeaseId,
    LeaseTtlSeconds,
    MembershipKey,
    Namespace,
    PortNumber,
    StoreValue,
    Timestamp,
    UrlString,
)

__all__ = [
    "Address",
    "DurationSeconds",
    "HostAddress",
    "KeyPrefix",
    "LeaseId",
    "LeaseTtlSeconds",
    "MembershipKey",
    "Namespace",
    "PortNumber",
    "StoreValue",
    "Timestamp",
    "UrlString",
]
