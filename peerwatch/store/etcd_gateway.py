"""
etcd v3 coordination store over the JSON gRPC gateway.

etcd exposes its KV, lease and watch services as JSON over HTTP under
``/v3/``. Keys and values travel base64-encoded and 64-bit integers are
rendered as strings. Streaming endpoints (watch) return one JSON object per
line, each wrapped in ``{"result": ...}``.

The gateway's keep-alive endpoint answers one renewal per request, so the
keep-alive stream here renews every ``ttl / 3`` seconds and yields ``None``
as soon as a renewal comes back with ``TTL <= 0`` (the lease is gone) or the
request fails.
"""

from __future__ import annotations

import asyncio
import base64
import json
from collections.abc import AsyncIterator
from typing import Any

import aiohttp
from loguru import logger

from peerwatch.datastructures.type_aliases import (
    DurationSeconds,
    KeyPrefix,
    LeaseId,
    LeaseTtlSeconds,
    MembershipKey,
    StoreValue,
    UrlString,
)

from .interfaces import (
    KeepAliveAck,
    KeyValue,
    Lease,
    LeaseNotFoundError,
    StoreError,
    StoreTimeoutError,
    WatchEvent,
    WatchEventType,
)

DEFAULT_REQUEST_TIMEOUT = 5.0


def _b64(value: str | bytes) -> str:
    raw = value.encode() if isinstance(value, str) else value
    return base64.b64encode(raw).decode("ascii")


def _unb64(value: str) -> str:
    return base64.b64decode(value).decode()


def prefix_range_end(prefix: str | bytes) -> bytes:
    """Return the exclusive range end covering every key with ``prefix``.

    Mirrors etcd's ``GetPrefixRangeEnd``: increment the last byte that is not
    0xff and drop everything after it. An all-0xff prefix maps to ``b"\\0"``,
    which etcd reads as "to the end of the keyspace".
    """
    raw = bytearray(prefix.encode() if isinstance(prefix, str) else prefix)
    for index in range(len(raw) - 1, -1, -1):
        if raw[index] < 0xFF:
            raw[index] += 1
            return bytes(raw[: index + 1])
    return b"\0"


class EtcdGatewayStore:
    """``CoordinationStore`` backed by an etcd cluster's JSON gateway."""

    def __init__(
        self,
        base_url: UrlString,
        *,
        session: aiohttp.ClientSession | None = None,
        request_timeout: DurationSeconds = DEFAULT_REQUEST_TIMEOUT,
        keepalive_interval: DurationSeconds | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._request_timeout = request_timeout
        self._keepalive_interval = keepalive_interval

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def _call(
        self, path: str, payload: dict[str, Any], *, timeout: float | None = None
    ) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        total = timeout if timeout is not None else self._request_timeout
        try:
            async with self._get_session().post(
                url, json=payload, timeout=aiohttp.ClientTimeout(total=total)
            ) as response:
                body = await response.text()
                if response.status != 200:
                    raise StoreError(
                        f"{path} failed with status {response.status}: {body.strip()}"
                    )
                return json.loads(body) if body else {}
        except TimeoutError as e:
            raise StoreTimeoutError(f"{path} exceeded {total}s") from e
        except aiohttp.ClientError as e:
            raise StoreError(f"{path} failed: {e}") from e

    async def grant(self, ttl: LeaseTtlSeconds) -> Lease:
        data = await self._call("/v3/lease/grant", {"TTL": ttl})
        if data.get("error"):
            raise StoreError(f"lease grant refused: {data['error']}")
        return Lease(lease_id=int(data["ID"]), ttl=int(data.get("TTL", ttl)))

    async def put(
        self, key: MembershipKey, value: StoreValue, *, lease: LeaseId | None = None
    ) -> None:
        payload: dict[str, Any] = {"key": _b64(key), "value": _b64(value)}
        if lease is not None:
            payload["lease"] = str(lease)
        await self._call("/v3/kv/put", payload)

    async def _renew(self, lease_id: LeaseId) -> KeepAliveAck | None:
        data = await self._call("/v3/lease/keepalive", {"ID": str(lease_id)})
        result = data.get("result", data)
        ttl = int(result.get("TTL", 0))
        if ttl <= 0:
            return None
        return KeepAliveAck(lease_id=lease_id, ttl=ttl)

    async def keep_alive(self, lease_id: LeaseId) -> AsyncIterator[KeepAliveAck | None]:
        first = await self._renew(lease_id)
        if first is None:
            raise LeaseNotFoundError(f"lease {lease_id} not found")
        return self._keep_alive_stream(first)

    async def _keep_alive_stream(
        self, first: KeepAliveAck
    ) -> AsyncIterator[KeepAliveAck | None]:
        ack: KeepAliveAck | None = first
        while ack is not None:
            yield ack
            await asyncio.sleep(self._keepalive_interval or ack.ttl / 3)
            try:
                ack = await self._renew(first.lease_id)
            except StoreError as e:
                logger.warning("Keep-alive for lease {} failed: {}", first.lease_id, e)
                ack = None
        yield None

    async def watch(self, prefix: KeyPrefix) -> AsyncIterator[WatchEvent]:
        payload = {
            "create_request": {
                "key": _b64(prefix),
                "range_end": _b64(prefix_range_end(prefix)),
            }
        }
        url = f"{self.base_url}/v3/watch"
        try:
            response = await self._get_session().post(
                url,
                json=payload,
                timeout=aiohttp.ClientTimeout(
                    total=None, sock_connect=self._request_timeout
                ),
            )
        except aiohttp.ClientError as e:
            raise StoreError(f"/v3/watch failed: {e}") from e
        if response.status != 200:
            body = await response.text()
            response.release()
            raise StoreError(
                f"/v3/watch failed with status {response.status}: {body.strip()}"
            )
        return self._watch_stream(response)

    async def _watch_stream(
        self, response: aiohttp.ClientResponse
    ) -> AsyncIterator[WatchEvent]:
        try:
            async for line in response.content:
                if not line.strip():
                    continue
                message = json.loads(line)
                if "error" in message:
                    raise StoreError(f"watch error: {message['error']}")
                result = message.get("result", {})
                if result.get("canceled"):
                    return
                for event in result.get("events", ()):
                    # proto3 JSON omits enum zero values, so PUT has no "type"
                    event_type = (
                        WatchEventType.DELETE
                        if event.get("type") == "DELETE"
                        else WatchEventType.PUT
                    )
                    yield WatchEvent(
                        event_type=event_type, key=_unb64(event["kv"]["key"])
                    )
        except aiohttp.ClientError as e:
            raise StoreError(f"watch stream failed: {e}") from e
        finally:
            response.release()

    async def get_prefix(
        self, prefix: KeyPrefix, *, timeout: float | None = None
    ) -> list[KeyValue]:
        data = await self._call(
            "/v3/kv/range",
            {"key": _b64(prefix), "range_end": _b64(prefix_range_end(prefix))},
            timeout=timeout,
        )
        records: list[KeyValue] = []
        for kv in data.get("kvs", ()):
            lease = kv.get("lease")
            records.append(
                KeyValue(
                    key=_unb64(kv["key"]),
                    value=_unb64(kv.get("value", "")),
                    lease_id=int(lease) if lease else None,
                )
            )
        return records

    async def delete(self, key: MembershipKey) -> None:
        await self._call("/v3/kv/deleterange", {"key": _b64(key)})

    async def revoke(self, lease_id: LeaseId) -> None:
        await self._call("/v3/lease/revoke", {"ID": str(lease_id)})

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
        self._session = None
