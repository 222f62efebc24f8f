# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Prometheus metrics for the control loop.

Labels stay low-cardinality (phase, role, op/result, reason). The per-broker
rate gauge is the one exception: it is bounded by cluster size and is what
operators chart during a reassignment.

Each AppContext owns its own CollectorRegistry; the admin API exposes it at
/metrics.
"""

from dataclasses import dataclass

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Gauge, Histogram, generate_latest

__all__ = ["CONTENT_TYPE_LATEST", "ServiceMetrics", "render"]


@dataclass
class ServiceMetrics:
    registry: CollectorRegistry
    ticks_total: Counter
    tick_seconds: Histogram
    throttle_rate_mbps: Gauge
    writes_total: Counter
    fallbacks_total: Counter
    override_active: Gauge

    @classmethod
    def create(cls, registry: CollectorRegistry | None = None) -> ServiceMetrics:
        reg = registry or CollectorRegistry()
        return cls(
            registry=reg,
            ticks_total=Counter("autothrottle_ticks_total", "Control loop ticks", ["phase"], registry=reg),
            tick_seconds=Histogram(
                "autothrottle_tick_seconds",
                "Duration of one control loop tick",
                buckets=(0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, 60),
                registry=reg,
            ),
            throttle_rate_mbps=Gauge(
                "autothrottle_throttle_rate_mbps",
                "Replication throttle currently applied (MB/s)",
                ["broker", "role"],
                registry=reg,
            ),
            writes_total=Counter(
                "autothrottle_throttle_writes_total", "Broker throttle writes", ["op", "result"], registry=reg
            ),
            fallbacks_total=Counter(
                "autothrottle_fallbacks_total", "Rates that fell back to the minimum", ["reason"], registry=reg
            ),
            override_active=Gauge(
                "autothrottle_override_active", "1 while a throttle override is in effect", registry=reg
            ),
        )

    def applied(self, broker_id: int, role: str, rate: float) -> None:
        self.throttle_rate_mbps.labels(broker=str(broker_id), role=role).set(rate)

    def cleared(self, broker_id: int, role: str | None = None) -> None:
        roles = [role] if role else ["source", "destination"]
        for r in roles:
            try:
                self.throttle_rate_mbps.remove(str(broker_id), r)
            except KeyError:
                continue


def render(metrics: ServiceMetrics) -> bytes:
    return generate_latest(metrics.registry)
