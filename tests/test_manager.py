"""
End-to-end tests for the membership manager.

Several managers share one in-memory coordination store, the way several
processes of one service share an etcd cluster.
"""

import pytest

from peerwatch.core.model import (
    IdentityResolutionError,
    Node,
    PeerWatchError,
    RegistrationError,
)
from peerwatch.membership import identity
from peerwatch.membership.manager import MembershipManager
from peerwatch.store.interfaces import StoreError
from peerwatch.store.memory import InMemoryCoordinationStore
from tests.conftest import AsyncTestContext
from tests.test_helpers import fast_settings, wait_for_condition


def _addresses(manager: MembershipManager) -> frozenset[str]:
    return frozenset(node.address for node in manager.get_nodes())


class TestIdentity:
    def test_local_identity_from_settings(self) -> None:
        manager = MembershipManager(InMemoryCoordinationStore(), fast_settings())
        assert manager.get_local_address() == "10.0.0.1:9000"
        assert manager.get_local_id() == "svc_10.0.0.1:9000"
        assert manager.local_node == Node("10.0.0.1:9000")

    def test_identity_failure_aborts_construction(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def _no_route(*args: object, **kwargs: object) -> str:
            raise IdentityResolutionError("no outbound route")

        monkeypatch.setattr(identity, "discover_outbound_host", _no_route)
        with pytest.raises(IdentityResolutionError):
            MembershipManager(InMemoryCoordinationStore(), fast_settings(host=""))


class TestMembershipLifecycle:
    @pytest.mark.asyncio
    async def test_two_nodes_then_lease_expiry(
        self, store: InMemoryCoordinationStore, test_context: AsyncTestContext
    ) -> None:
        first = await test_context.start_manager(store, fast_settings("10.0.0.1"))
        second = await test_context.start_manager(store, fast_settings("10.0.0.2"))
        both = frozenset({"10.0.0.1:9000", "10.0.0.2:9000"})

        await wait_for_condition(lambda: _addresses(first) == both)
        await wait_for_condition(lambda: _addresses(second) == both)
        assert len(second.get_nodes()) == 2

        # The first node dies without deregistering; its lease then expires.
        lease_id = store.lease_of(first.get_local_id())
        await first.stop(deregister=False)
        assert lease_id is not None
        store.expire_lease(lease_id)

        await wait_for_condition(
            lambda: _addresses(second) == frozenset({"10.0.0.2:9000"})
        )

    @pytest.mark.asyncio
    async def test_local_node_appears_via_store(
        self, store: InMemoryCoordinationStore, test_context: AsyncTestContext
    ) -> None:
        manager = await test_context.start_manager(store, fast_settings())
        await wait_for_condition(
            lambda: _addresses(manager) == frozenset({"10.0.0.1:9000"})
        )
        assert manager.healthy

    @pytest.mark.asyncio
    async def test_initial_registration_failure_is_fatal(
        self, store: InMemoryCoordinationStore
    ) -> None:
        store.inject_failure("grant", StoreError("no leader"))
        manager = MembershipManager(store, fast_settings())

        with pytest.raises(RegistrationError):
            await manager.start()

        assert store.watcher_count == 0
        assert store.operation_counts["get_prefix"] == 0
        assert not manager.healthy

    @pytest.mark.asyncio
    async def test_reconnection_keeps_watcher_and_poller(
        self, store: InMemoryCoordinationStore, test_context: AsyncTestContext
    ) -> None:
        manager = await test_context.start_manager(store, fast_settings())
        await wait_for_condition(lambda: store.watcher_count == 1)

        lease_id = store.lease_of(manager.get_local_id())
        assert lease_id is not None
        store.expire_lease(lease_id)

        await wait_for_condition(lambda: manager.get_statistics().registrations == 2)
        await wait_for_condition(
            lambda: _addresses(manager) == frozenset({"10.0.0.1:9000"})
        )
        assert store.watcher_count == 1
        assert store.operation_counts["watch"] == 1
        assert manager.healthy

    @pytest.mark.asyncio
    async def test_store_restart_heals_membership(
        self, store: InMemoryCoordinationStore, test_context: AsyncTestContext
    ) -> None:
        first = await test_context.start_manager(store, fast_settings("10.0.0.1"))
        second = await test_context.start_manager(store, fast_settings("10.0.0.2"))
        both = frozenset({"10.0.0.1:9000", "10.0.0.2:9000"})
        await wait_for_condition(lambda: _addresses(first) == both)

        store.restart()

        for manager in (first, second):
            await wait_for_condition(
                lambda m=manager: m.get_statistics().registrations == 2
            )
            await wait_for_condition(
                lambda m=manager: m.get_statistics().watch_resubscriptions >= 1
            )
        assert store.keys() == sorted([first.get_local_id(), second.get_local_id()])

        for manager in (first, second):
            await manager.fetch_snapshot()
            await manager.settle()
            assert _addresses(manager) == both
            assert manager.healthy

    @pytest.mark.asyncio
    async def test_stop_deregisters_from_peers(
        self, store: InMemoryCoordinationStore, test_context: AsyncTestContext
    ) -> None:
        first = await test_context.start_manager(store, fast_settings("10.0.0.1"))
        second = await test_context.start_manager(store, fast_settings("10.0.0.2"))
        await wait_for_condition(lambda: len(second.get_nodes()) == 2)

        await first.stop()

        await wait_for_condition(
            lambda: _addresses(second) == frozenset({"10.0.0.2:9000"})
        )
        assert store.keys() == [second.get_local_id()]

    @pytest.mark.asyncio
    async def test_fetch_snapshot_returns_registered_addresses(
        self, store: InMemoryCoordinationStore, test_context: AsyncTestContext
    ) -> None:
        manager = await test_context.start_manager(store, fast_settings())
        await store.put("svc_10.0.0.5:9000", "0")

        addresses = await manager.fetch_snapshot()
        await manager.settle()

        assert addresses == ["10.0.0.1:9000", "10.0.0.5:9000"]
        assert {"10.0.0.1:9000", "10.0.0.5:9000"} <= _addresses(manager)

    @pytest.mark.asyncio
    async def test_async_context_manager(
        self, store: InMemoryCoordinationStore
    ) -> None:
        async with MembershipManager(store, fast_settings()) as manager:
            assert store.keys() == [manager.get_local_id()]
            await wait_for_condition(lambda: len(manager.get_nodes()) == 1)

        assert store.keys() == []
        assert store.active_leases() == []

    @pytest.mark.asyncio
    async def test_statistics_snapshot(
        self, store: InMemoryCoordinationStore, test_context: AsyncTestContext
    ) -> None:
        manager = await test_context.start_manager(store, fast_settings())
        await wait_for_condition(lambda: manager.get_statistics().poll_cycles >= 1)
        await manager.settle()

        stats = manager.get_statistics()
        assert stats.local_id == "svc_10.0.0.1:9000"
        assert stats.table_size == 1
        assert stats.registrations == 1
        assert stats.reconnect_failures == 0
        assert stats.poll_errors == 0
        assert stats.healthy

    @pytest.mark.asyncio
    async def test_start_after_stop_is_refused(
        self, store: InMemoryCoordinationStore
    ) -> None:
        manager = MembershipManager(store, fast_settings())
        await manager.start()
        await manager.stop()

        with pytest.raises(PeerWatchError):
            await manager.start()

        assert store.operation_counts["grant"] == 1
        assert store.keys() == []
        assert store.active_leases() == []
        assert not manager.healthy

    @pytest.mark.asyncio
    async def test_failed_start_can_be_retried(
        self, store: InMemoryCoordinationStore, test_context: AsyncTestContext
    ) -> None:
        store.inject_failure("put", StoreError("no leader"))
        manager = MembershipManager(store, fast_settings())
        test_context.managers.append(manager)

        with pytest.raises(RegistrationError):
            await manager.start()
        assert store.active_leases() == []

        await manager.start()

        await wait_for_condition(
            lambda: _addresses(manager) == frozenset({"10.0.0.1:9000"})
        )
        assert store.keys() == [manager.get_local_id()]
        assert manager.get_statistics().registrations == 1
        assert manager.healthy
