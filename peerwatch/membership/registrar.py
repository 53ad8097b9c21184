"""
Lease registration for the local node.

The registrar makes the local node observably alive in the coordination
store: it grants a short lease, writes the membership record bound to it and
consumes the keep-alive stream. When the stream ends or reports a missing
acknowledgement the lease is considered gone for good, and the registrar
re-registers from scratch with a brand-new lease. Re-registration retries
with capped exponential backoff until it succeeds, and ``healthy`` reports
``False`` while it is failing.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable

from loguru import logger

from peerwatch.core.model import RegistrationError
from peerwatch.core.task_manager import TaskManager
from peerwatch.datastructures.type_aliases import (
    DurationSeconds,
    LeaseTtlSeconds,
    MembershipKey,
    StoreValue,
)
from peerwatch.store.interfaces import CoordinationStore, KeepAliveAck, Lease

LIVENESS_MARKER: StoreValue = "0"


class LeaseRegistrar:
    """Keeps the local membership record alive in the coordination store."""

    def __init__(
        self,
        store: CoordinationStore,
        local_id: MembershipKey,
        *,
        lease_ttl: LeaseTtlSeconds = 2,
        backoff_initial: DurationSeconds = 0.5,
        backoff_max: DurationSeconds = 10.0,
        on_first_registration: Callable[[], None] | None = None,
        name: str = "LeaseRegistrar",
    ) -> None:
        self.name = name
        self._store = store
        self._local_id = local_id
        self._lease_ttl = lease_ttl
        self._backoff_initial = backoff_initial
        self._backoff_max = backoff_max
        self._on_first_registration = on_first_registration
        self._task_manager = TaskManager(name)
        self._reconnect_task: asyncio.Task[None] | None = None
        self._first_registration_done = False

        self.lease: Lease | None = None
        self.healthy = False
        self.last_error: Exception | None = None
        self.registrations = 0
        self.reconnect_attempts = 0
        self.reconnect_failures = 0

    async def register(self, is_reconnect: bool = False) -> Lease:
        """Grant a lease, write the record and start listening to renewals.

        Raises ``RegistrationError`` if any of the three steps fails or the
        registrar has been stopped. A lease granted by a failed attempt is
        revoked, so the attempt leaves no record behind.
        """
        if self._task_manager.shutdown_requested:
            raise RegistrationError(
                f"registration of {self._local_id!r} refused: registrar is stopped"
            )

        try:
            lease = await self._store.grant(self._lease_ttl)
        except Exception as e:
            raise RegistrationError(
                f"registration of {self._local_id!r} failed: {e}"
            ) from e

        try:
            await self._store.put(self._local_id, LIVENESS_MARKER, lease=lease.lease_id)
            renewals = await self._store.keep_alive(lease.lease_id)
            self._task_manager.create_task(
                self._listen(lease, renewals),
                name=f"{self.name}-keepalive-{lease.lease_id}",
            )
        except Exception as e:
            await self._revoke(lease)
            raise RegistrationError(
                f"registration of {self._local_id!r} failed: {e}"
            ) from e

        self.lease = lease
        self.registrations += 1
        self.healthy = True
        self.last_error = None
        logger.info(
            f"[{self.name}] Registered {self._local_id} with lease {lease.lease_id} "
            f"(ttl={lease.ttl}s, reconnect={is_reconnect})"
        )

        if not is_reconnect and not self._first_registration_done:
            self._first_registration_done = True
            if self._on_first_registration is not None:
                self._on_first_registration()
        return lease

    async def _listen(
        self, lease: Lease, renewals: AsyncIterator[KeepAliveAck | None]
    ) -> None:
        reason = "keep-alive stream closed"
        try:
            async for ack in renewals:
                if ack is None:
                    reason = "keep-alive acknowledgement missing"
                    break
        except Exception as e:
            reason = f"keep-alive stream failed: {e!r}"
        finally:
            aclose = getattr(renewals, "aclose", None)
            if aclose is not None:
                await aclose()

        logger.warning(
            f"[{self.name}] Lease {lease.lease_id} lost ({reason}); re-registering"
        )
        self.healthy = False
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._task_manager.shutdown_requested:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = self._task_manager.create_task(
            self._reconnect(), name=f"{self.name}-reconnect"
        )

    async def _reconnect(self) -> None:
        delay = self._backoff_initial
        attempt = 0
        while True:
            attempt += 1
            self.reconnect_attempts += 1
            try:
                await self.register(is_reconnect=True)
            except RegistrationError as e:
                self.reconnect_failures += 1
                self.healthy = False
                self.last_error = e
                logger.error(
                    f"[{self.name}] Re-registration attempt {attempt} failed: {e}; "
                    f"retrying in {delay:.2f}s"
                )
            else:
                if attempt > 1:
                    logger.info(
                        f"[{self.name}] Re-registered after {attempt} attempts"
                    )
                return

            await asyncio.sleep(delay)
            delay = min(max(delay * 2, self._backoff_initial), self._backoff_max)

    async def stop(self, *, revoke: bool = True) -> None:
        """Stop renewing and, optionally, revoke the current lease."""
        await self._task_manager.shutdown()
        lease, self.lease = self.lease, None
        self.healthy = False
        if revoke and lease is not None:
            await self._revoke(lease)

    async def _revoke(self, lease: Lease) -> None:
        try:
            await self._store.revoke(lease.lease_id)
        except Exception as e:
            logger.warning(
                f"[{self.name}] Could not revoke lease {lease.lease_id}: {e}"
            )
