from __future__ import annotations

"""
Throttle decision engine: limits, override record and per-broker state.

The control loop lives in `autothrottle.throttle.controller`; it is not
re-exported here because it depends on the Kafka and metrics collaborators,
which themselves import the models below.
"""

from .limits import Limits
from .models import BrokerMetrics, EventKind, Reassignment, ReplicaRole, ThrottleEvent, ThrottleOverrideConfig
from .override import OverrideGovernor
from .state import BrokerThrottle, ThrottleState, exceeds_threshold

__all__ = [
    "BrokerMetrics",
    "BrokerThrottle",
    "EventKind",
    "Limits",
    "OverrideGovernor",
    "Reassignment",
    "ReplicaRole",
    "ThrottleEvent",
    "ThrottleOverrideConfig",
    "ThrottleState",
    "exceeds_threshold",
]
