"""Pytest configuration and fixtures for membership testing.

Every manager or background component created through these fixtures is
stopped on teardown so no task outlives its test.
"""

from collections.abc import AsyncGenerator
from typing import Any

import pytest_asyncio
from loguru import logger

from peerwatch.config import PeerWatchSettings
from peerwatch.membership.manager import MembershipManager
from peerwatch.store.memory import InMemoryCoordinationStore


class AsyncTestContext:
    """Context manager for async membership tests with automatic cleanup."""

    def __init__(self) -> None:
        self.managers: list[MembershipManager] = []
        self.components: list[Any] = []

    async def __aenter__(self) -> "AsyncTestContext":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        for manager in self.managers:
            try:
                await manager.stop(deregister=False)
            except Exception as e:
                logger.warning(f"Error stopping manager: {e}")

        for component in self.components:
            try:
                await component.stop()
            except Exception as e:
                logger.warning(f"Error stopping {component!r}: {e}")

        self.managers.clear()
        self.components.clear()

    async def start_manager(
        self, store: InMemoryCoordinationStore, settings: PeerWatchSettings
    ) -> MembershipManager:
        manager = MembershipManager(store, settings)
        self.managers.append(manager)
        await manager.start()
        return manager


@pytest_asyncio.fixture
async def test_context() -> AsyncGenerator[AsyncTestContext, None]:
    """Provides a clean async test context with automatic resource cleanup."""
    async with AsyncTestContext() as ctx:
        yield ctx


@pytest_asyncio.fixture
async def store() -> AsyncGenerator[InMemoryCoordinationStore, None]:
    """In-memory coordination store with fast keep-alive renewals."""
    memory_store = InMemoryCoordinationStore(keepalive_interval=0.01)
    yield memory_store
    await memory_store.close()
