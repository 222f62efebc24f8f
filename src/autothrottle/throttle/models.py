from __future__ import annotations

"""
Domain records shared by the control loop, the override governor and the
collaborator implementations.

- BrokerMetrics and Reassignment are rebuilt every tick from collaborators.
- ThrottleOverrideConfig is the persisted admin override (pydantic, so the
  stored JSON is validated on the way in and out).
- ThrottleEvent is what the control loop hands to the event emitter.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..core.types import BrokerId, InstanceType, MBps, TopicName


class ReplicaRole(str, Enum):
    """Part a broker plays in a reassignment for the current tick."""

    source = "source"  # sends data: outbound utilization, leader throttle
    destination = "destination"  # receives data: inbound utilization, follower throttle


@dataclass(frozen=True)
class BrokerMetrics:
    broker_id: BrokerId
    instance_type: InstanceType
    net_tx: MBps  # outbound
    net_rx: MBps  # inbound


@dataclass
class Reassignment:
    """Brokers involved in moving one topic's partitions."""

    topic: TopicName
    sources: set[BrokerId] = field(default_factory=set)
    destinations: set[BrokerId] = field(default_factory=set)

    @property
    def brokers(self) -> set[BrokerId]:
        return self.sources | self.destinations


class ThrottleOverrideConfig(BaseModel):
    """
    Operator-supplied throttle override. `rate == 0` means no override.
    Stored as {"rate": <int>, "autoremove": <bool>}.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    rate: int = Field(default=0, ge=0)
    auto_remove: bool = Field(default=False, alias="autoremove")

    @property
    def active(self) -> bool:
        return self.rate > 0

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class EventKind(str, Enum):
    THROTTLE_SET = "throttle.set"
    THROTTLE_SUMMARY = "throttle.summary"
    THROTTLE_REMOVED = "throttle.removed"
    REASSIGNMENT_IDLE = "reassignment.idle"
    OVERRIDE_REMOVED = "override.removed"


class ThrottleEvent(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: EventKind
    title: str
    text: str = ""
    topics: list[TopicName] = Field(default_factory=list)
    brokers: list[BrokerId] = Field(default_factory=list)
    role: ReplicaRole | None = None
    rate: MBps | None = None
    tags: list[str] = Field(default_factory=list)
