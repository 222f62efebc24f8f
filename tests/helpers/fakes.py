from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field

from autothrottle.errors import DiscoveryError, MetricsError, ThrottleWriteError
from autothrottle.throttle.models import BrokerMetrics, Reassignment, ReplicaRole, ThrottleEvent


def reassignment(topic: str, sources: Iterable[int], destinations: Iterable[int]) -> Reassignment:
    return Reassignment(topic=topic, sources=set(sources), destinations=set(destinations))


@dataclass
class FakeDiscovery:
    current: dict[str, Reassignment] = field(default_factory=dict)
    brokers: list[int] = field(default_factory=list)
    hosts: dict[int, str] = field(default_factory=dict)
    fail: bool = False
    calls: int = 0
    on_call: Callable[[int], None] | None = None

    def set(self, *items: Reassignment) -> None:
        self.current = {r.topic: r for r in items}

    async def reassignments(self) -> dict[str, Reassignment]:
        self.calls += 1
        if self.on_call is not None:
            self.on_call(self.calls)
        if self.fail:
            raise DiscoveryError("injected discovery failure")
        return dict(self.current)

    async def broker_ids(self) -> list[int]:
        return list(self.brokers)

    async def broker_host(self, broker_id: int) -> str:
        try:
            return self.hosts[broker_id]
        except KeyError:
            raise DiscoveryError(f"broker {broker_id} not registered") from None


@dataclass
class FakeMetrics:
    data: dict[int, BrokerMetrics] = field(default_factory=dict)
    fail: bool = False
    calls: list[tuple[list[int], int]] = field(default_factory=list)

    def put(self, broker_id: int, instance_type: str = "m5.large", *, tx: float = 0.0, rx: float = 0.0) -> None:
        self.data[broker_id] = BrokerMetrics(broker_id=broker_id, instance_type=instance_type, net_tx=tx, net_rx=rx)

    async def broker_metrics(self, broker_ids: Iterable[int], window_sec: int) -> dict[int, BrokerMetrics]:
        ids = list(broker_ids)
        self.calls.append((ids, window_sec))
        if self.fail:
            raise MetricsError("injected metrics failure")
        return {b: self.data[b] for b in ids if b in self.data}


@dataclass
class RecordingWriter:
    applied: list[tuple[int, dict[ReplicaRole, float]]] = field(default_factory=list)
    removed: list[int] = field(default_factory=list)
    fail_brokers: set[int] = field(default_factory=set)

    async def apply(self, broker_id: int, rates: Mapping[ReplicaRole, float]) -> None:
        if broker_id in self.fail_brokers:
            raise ThrottleWriteError(f"broker {broker_id}: injected write failure")
        self.applied.append((broker_id, dict(rates)))

    async def remove(self, broker_id: int) -> None:
        if broker_id in self.fail_brokers:
            raise ThrottleWriteError(f"broker {broker_id}: injected remove failure")
        self.removed.append(broker_id)

    def reset(self) -> None:
        self.applied.clear()
        self.removed.clear()


@dataclass
class RecordingEmitter:
    events: list[ThrottleEvent] = field(default_factory=list)

    async def emit(self, event: ThrottleEvent) -> None:
        self.events.append(event)

    def kinds(self) -> list[str]:
        return [e.kind.value for e in self.events]
