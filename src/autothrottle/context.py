from __future__ import annotations

"""
Process-wide wiring, built once by the entry point and handed to the control
loop and the admin API (tests build their own with in-memory collaborators).
"""

from dataclasses import dataclass

from .core.config import AutothrottleConfig
from .observability.metrics import ServiceMetrics
from .storage.coordination import CoordinationStore
from .throttle.limits import Limits
from .throttle.override import OverrideGovernor


@dataclass
class AppContext:
    cfg: AutothrottleConfig
    store: CoordinationStore
    limits: Limits
    governor: OverrideGovernor
    stats: ServiceMetrics

    @classmethod
    def build(cls, cfg: AutothrottleConfig, store: CoordinationStore) -> AppContext:
        """Raises LimitsConfigError for out-of-range limits."""
        limits = Limits(
            minimum=cfg.min_rate,
            maximum=cfg.max_rate,
            source_maximum=cfg.max_tx_rate,
            destination_maximum=cfg.max_rx_rate,
            capacities=cfg.cap_map,
        )
        return cls(
            cfg=cfg,
            store=store,
            limits=limits,
            governor=OverrideGovernor.for_prefix(store, cfg.zk_prefix),
            stats=ServiceMetrics.create(),
        )
