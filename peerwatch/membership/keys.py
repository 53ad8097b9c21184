"""Membership key encoding: ``<namespace>_<address>``."""

from __future__ import annotations

from dataclasses import dataclass

from peerwatch.core.model import MembershipKeyError
from peerwatch.datastructures.type_aliases import (
    Address,
    KeyPrefix,
    MembershipKey,
    Namespace,
)

KEY_SEPARATOR = "_"


def validate_namespace(namespace: Namespace) -> Namespace:
    """Reject namespaces that would make prefix matching ambiguous.

    A namespace containing the separator would let the prefix ``svc_`` also
    match records of namespace ``svc_x``.
    """
    if not namespace:
        raise MembershipKeyError("namespace must not be empty")
    if KEY_SEPARATOR in namespace:
        raise MembershipKeyError(
            f"namespace {namespace!r} must not contain {KEY_SEPARATOR!r}"
        )
    return namespace


@dataclass(frozen=True, slots=True)
class MembershipKeyCodec:
    """Builds and parses membership record keys for one namespace.

    Parsing strips the exact namespace prefix, so everything after the first
    separator is the address even when the address itself contains ``_``.
    """

    namespace: Namespace

    def __post_init__(self) -> None:
        validate_namespace(self.namespace)

    @property
    def prefix(self) -> KeyPrefix:
        return f"{self.namespace}{KEY_SEPARATOR}"

    def key_for(self, address: Address) -> MembershipKey:
        if not address:
            raise MembershipKeyError("address must not be empty")
        return f"{self.prefix}{address}"

    def address_from_key(self, key: MembershipKey) -> Address:
        prefix = self.prefix
        if not key.startswith(prefix):
            raise MembershipKeyError(
                f"key {key!r} is outside namespace {self.namespace!r}"
            )
        address = key[len(prefix) :]
        if not address:
            raise MembershipKeyError(f"key {key!r} has no address")
        return address
