"""Tests for the reconciliation poller."""

import pytest

from peerwatch.core.model import SnapshotFetchError
from peerwatch.membership.keys import MembershipKeyCodec
from peerwatch.membership.poller import ReconciliationPoller
from peerwatch.membership.table import MembershipTableActor
from peerwatch.store.interfaces import StoreError
from peerwatch.store.memory import InMemoryCoordinationStore
from tests.test_helpers import wait_for_condition

CODEC = MembershipKeyCodec("svc")


@pytest.fixture
def actor() -> MembershipTableActor:
    return MembershipTableActor()


def _poller(
    store: InMemoryCoordinationStore, actor: MembershipTableActor
) -> ReconciliationPoller:
    return ReconciliationPoller(store, CODEC, actor, interval=0.02, timeout=0.1)


@pytest.mark.asyncio
async def test_poll_adds_every_snapshot_member(
    store: InMemoryCoordinationStore, actor: MembershipTableActor, test_context
) -> None:
    actor.start()
    test_context.components.append(actor)
    await store.put(CODEC.key_for("10.0.0.1:9000"), "0")
    await store.put(CODEC.key_for("10.0.0.2:9000"), "0")
    await store.put("other_10.0.0.9:9000", "0")

    addresses = await _poller(store, actor).poll_once()
    await actor.join()

    assert addresses == ["10.0.0.1:9000", "10.0.0.2:9000"]
    assert actor.addresses() == frozenset(addresses)


@pytest.mark.asyncio
async def test_poll_never_evicts_missing_members(
    store: InMemoryCoordinationStore, actor: MembershipTableActor, test_context
) -> None:
    actor.start()
    test_context.components.append(actor)
    actor.submit_add("10.0.0.7:9000")
    await store.put(CODEC.key_for("10.0.0.1:9000"), "0")

    await _poller(store, actor).poll_once()
    await actor.join()

    assert actor.addresses() == frozenset({"10.0.0.1:9000", "10.0.0.7:9000"})


@pytest.mark.asyncio
async def test_repeated_polls_are_deduplicated(
    store: InMemoryCoordinationStore, actor: MembershipTableActor, test_context
) -> None:
    actor.start()
    test_context.components.append(actor)
    await store.put(CODEC.key_for("10.0.0.1:9000"), "0")
    poller = _poller(store, actor)

    await poller.poll_once()
    await actor.join()
    await poller.poll_once()
    await actor.join()

    assert len(actor.nodes()) == 1
    assert actor.adds_suppressed == 1
    assert poller.cycles == 2


@pytest.mark.asyncio
async def test_fetch_timeout_is_a_snapshot_error(actor: MembershipTableActor) -> None:
    slow_store = InMemoryCoordinationStore(get_latency=0.5)
    poller = _poller(slow_store, actor)

    with pytest.raises(SnapshotFetchError):
        await poller.poll_once()
    assert poller.cycles == 0


@pytest.mark.asyncio
async def test_background_loop_survives_fetch_errors(
    store: InMemoryCoordinationStore, actor: MembershipTableActor, test_context
) -> None:
    store.inject_failure("get_prefix", StoreError("leader changed"), times=2)
    await store.put(CODEC.key_for("10.0.0.1:9000"), "0")
    actor.start()
    poller = _poller(store, actor)
    test_context.components.extend([poller, actor])

    poller.start()
    await wait_for_condition(lambda: actor.addresses() == frozenset({"10.0.0.1:9000"}))

    assert poller.errors == 2
    assert poller.cycles >= 1
