from __future__ import annotations

"""
Replication headroom calculation.

Headroom is a crude estimate of the bandwidth left for replication: the
previously applied throttle is subtracted from current utilization to
approximate non-replication demand, that demand (and any amount by which the
broker already exceeds its capacity) is subtracted from capacity, and the
remainder is scaled by the configured portion. The result never drops below
the configured minimum rate.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field

from ..core.types import InstanceType, MBps
from ..errors import (
    BrokerMissingError,
    InvalidRoleError,
    LimitsConfigError,
    UnknownInstanceTypeError,
)
from .models import BrokerMetrics, ReplicaRole


def _check_portion(name: str, value: float) -> None:
    if value <= 0 or value > 100:
        raise LimitsConfigError(f"{name} must be > 0 and <= 100")


@dataclass(frozen=True)
class Limits:
    """
    minimum:             floor for every computed rate, MB/s.
    maximum:             portion (percent) of free capacity used by `headroom`.
    source_maximum:      portion used for brokers sending reassignment data.
    destination_maximum: portion used for brokers receiving reassignment data.
    capacities:          instance type -> total network capacity, MB/s.
    """

    minimum: MBps
    maximum: float
    source_maximum: float
    destination_maximum: float
    capacities: Mapping[InstanceType, MBps] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.minimum <= 0:
            raise LimitsConfigError("minimum must be > 0")
        _check_portion("maximum", self.maximum)
        _check_portion("source maximum", self.source_maximum)
        _check_portion("destination maximum", self.destination_maximum)
        object.__setattr__(self, "capacities", dict(self.capacities))

    def capacity(self, broker: BrokerMetrics | None) -> MBps:
        if broker is None:
            raise BrokerMissingError("nil broker provided", fallback=self.minimum)
        try:
            return self.capacities[broker.instance_type]
        except KeyError:
            raise UnknownInstanceTypeError(
                f"unknown instance type {broker.instance_type!r}", fallback=self.minimum
            ) from None

    def headroom(self, broker: BrokerMetrics | None, previous_rate: MBps) -> MBps:
        """Rate based on outbound utilization and the legacy global `maximum` portion."""
        capacity = self.capacity(broker)
        non_throttle = max(broker.net_tx - previous_rate, 0.0)
        over_cap = max(broker.net_tx - capacity, 0.0)
        return max((capacity - non_throttle - over_cap) * (self.maximum / 100), self.minimum)

    def replication_headroom(self, broker: BrokerMetrics | None, role: ReplicaRole | str, previous_rate: MBps) -> MBps:
        """
        Role-aware rate: sources are measured on outbound traffic against
        `source_maximum`, destinations on inbound traffic against
        `destination_maximum`.

        NOTE: non-replication demand is derived from outbound traffic for both
        roles. This mirrors the behavior operators tuned their portions against;
        switching destinations to inbound needs a deliberate rollout.
        """
        if role == ReplicaRole.source:
            portion = self.source_maximum
        elif role == ReplicaRole.destination:
            portion = self.destination_maximum
        else:
            raise InvalidRoleError(f"invalid replica role {role!r}", fallback=0.0)

        capacity = self.capacity(broker)
        utilization = broker.net_tx if role == ReplicaRole.source else broker.net_rx
        non_throttle = max(broker.net_tx - previous_rate, 0.0)
        over_cap = max(utilization - capacity, 0.0)
        return max((capacity - non_throttle - over_cap) * (portion / 100), self.minimum)
