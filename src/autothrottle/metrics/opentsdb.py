# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Broker network metrics from OpenTSDB.

For each broker the host is resolved (ZooKeeper broker registration), then the
outbound and inbound byte-rate metrics are averaged over the window with
/api/query. The instance type is read from the tag OpenTSDB reports on the
series. A broker whose host, series or instance type is missing is left out of
the result; the control loop counts that as a failed fetch for the broker.
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, Protocol

import httpx

from ..core.log import get_logger
from ..core.types import BYTES_PER_MB, BrokerId
from ..errors import DiscoveryError, MetricsError
from ..throttle.models import BrokerMetrics


class MetricsProvider(Protocol):
    async def broker_metrics(self, broker_ids: Iterable[BrokerId], window_sec: int) -> dict[BrokerId, BrokerMetrics]:
        """Metrics per broker; brokers without complete data are absent. Raises MetricsError."""


HostResolver = Callable[[BrokerId], Awaitable[str]]


class _Series:
    __slots__ = ("mean", "tags")

    def __init__(self, mean: float, tags: dict[str, str]) -> None:
        self.mean = mean
        self.tags = tags


def parse_query_response(data: Any) -> _Series | None:
    """Average of the first returned series' datapoints, or None when empty."""
    if not isinstance(data, list) or not data:
        return None
    first = data[0]
    dps = first.get("dps") or {}
    values = list(dps.values()) if isinstance(dps, dict) else [v for _ts, v in dps]
    if not values:
        return None
    return _Series(sum(values) / len(values), dict(first.get("tags") or {}))


class OpenTSDBMetrics:
    def __init__(
        self,
        url: str,
        resolve_host: HostResolver,
        *,
        net_tx_metric: str = "system.net.bytes_sent",
        net_rx_metric: str = "system.net.bytes_rcvd",
        host_tag: str = "host",
        instance_type_tag: str = "instance-type",
        timeout_sec: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url.rstrip("/")
        self.resolve_host = resolve_host
        self.net_tx_metric = net_tx_metric
        self.net_rx_metric = net_rx_metric
        self.host_tag = host_tag
        self.instance_type_tag = instance_type_tag
        self._client = client or httpx.AsyncClient(timeout=timeout_sec)
        self.log = get_logger("metrics.opentsdb")

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _query(self, metric: str, host: str, window_sec: int) -> _Series | None:
        payload = {
            "start": f"{int(window_sec)}s-ago",
            "queries": [{"metric": metric, "aggregator": "avg", "tags": {self.host_tag: host}}],
        }
        try:
            resp = await self._client.post(f"{self.url}/api/query", json=payload)
        except httpx.HTTPError as e:
            raise MetricsError(f"opentsdb query {metric} for {host} failed: {e}") from e
        if resp.status_code == 400:
            # OpenTSDB answers 400 when no series matches the tags.
            return None
        if resp.status_code != 200:
            raise MetricsError(f"opentsdb query {metric} for {host} failed: HTTP {resp.status_code}")
        try:
            return parse_query_response(resp.json())
        except (AttributeError, TypeError, ValueError) as e:
            raise MetricsError(f"opentsdb query {metric} for {host}: malformed response: {e}") from e

    async def _one(self, broker_id: BrokerId, window_sec: int) -> BrokerMetrics | None:
        try:
            host = await self.resolve_host(broker_id)
        except DiscoveryError as e:
            self.log.warning("broker host unknown", event="metrics.host.missing", broker=broker_id, error=str(e))
            return None

        tx, rx = await asyncio.gather(
            self._query(self.net_tx_metric, host, window_sec),
            self._query(self.net_rx_metric, host, window_sec),
        )
        if tx is None or rx is None:
            self.log.warning("incomplete broker metrics", event="metrics.incomplete", broker=broker_id, host=host)
            return None
        instance_type = tx.tags.get(self.instance_type_tag) or rx.tags.get(self.instance_type_tag)
        if not instance_type:
            self.log.warning("broker instance type unknown", event="metrics.instance_type.missing", broker=broker_id)
            return None
        return BrokerMetrics(
            broker_id=broker_id,
            instance_type=instance_type,
            net_tx=tx.mean / BYTES_PER_MB,
            net_rx=rx.mean / BYTES_PER_MB,
        )

    async def broker_metrics(self, broker_ids: Iterable[BrokerId], window_sec: int) -> dict[BrokerId, BrokerMetrics]:
        ids = sorted(set(broker_ids))
        results = await asyncio.gather(*(self._one(b, window_sec) for b in ids), return_exceptions=True)
        out: dict[BrokerId, BrokerMetrics] = {}
        for broker_id, res in zip(ids, results):
            if isinstance(res, BaseException):
                if not isinstance(res, MetricsError):
                    raise res
                self.log.warning("broker metrics query failed", event="metrics.error", broker=broker_id, error=str(res))
                continue
            if res is not None:
                out[broker_id] = res
        return out
