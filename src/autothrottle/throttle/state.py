from __future__ import annotations

"""
In-memory throttle bookkeeping owned by the control loop.

One entry per (broker, role): the last rate successfully written, the last rate
computed from fresh metrics and the number of consecutive ticks the broker's
metrics could not be used. The two rates differ while an override or a minimum
fallback is in force. Nothing here is persisted; after a restart the first
tick computes from a zero previous rate.
"""

from collections.abc import Iterator
from dataclasses import dataclass

from ..core.types import BrokerId, MBps
from .models import ReplicaRole

Key = tuple[BrokerId, ReplicaRole]


@dataclass
class BrokerThrottle:
    rate: MBps | None = None
    computed: MBps | None = None
    failures: int = 0


def exceeds_threshold(previous: MBps | None, desired: MBps, threshold_pct: float) -> bool:
    """True if moving from `previous` to `desired` is a change of at least `threshold_pct` percent."""
    if previous is None or previous <= 0:
        return True
    return abs(desired - previous) * 100 / previous >= threshold_pct


class ThrottleState:
    def __init__(self) -> None:
        self._entries: dict[Key, BrokerThrottle] = {}

    def entry(self, broker_id: BrokerId, role: ReplicaRole) -> BrokerThrottle:
        return self._entries.setdefault((broker_id, role), BrokerThrottle())

    def rate(self, broker_id: BrokerId, role: ReplicaRole) -> MBps | None:
        e = self._entries.get((broker_id, role))
        return e.rate if e else None

    def applied(self) -> dict[Key, MBps]:
        return {k: e.rate for k, e in self._entries.items() if e.rate is not None}

    def rates_for(self, broker_id: BrokerId) -> dict[ReplicaRole, MBps]:
        return {role: rate for (b, role), rate in self.applied().items() if b == broker_id}

    def brokers(self) -> set[BrokerId]:
        """Brokers currently holding at least one applied throttle."""
        return {b for b, _role in self.applied()}

    def forget(self, broker_id: BrokerId, role: ReplicaRole | None = None) -> None:
        for key in [k for k in self._entries if k[0] == broker_id and (role is None or k[1] == role)]:
            del self._entries[key]

    def prune(self, keep: set[Key] | frozenset[Key] = frozenset()) -> None:
        """Drop entries that hold no applied rate and are not in `keep` (resets their failure counts)."""
        for key in [k for k, e in self._entries.items() if e.rate is None and k not in keep]:
            del self._entries[key]

    def clear(self) -> None:
        self._entries.clear()

    def __iter__(self) -> Iterator[Key]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
