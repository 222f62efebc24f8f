from __future__ import annotations

"""
Throttle control loop.

Each tick:
  1. read in-flight reassignments; none -> idle handling (clear throttles on the
     throttling -> idle transition, optional override autoremove, periodic
     safety-net clears);
  2. classify brokers: current holders are sources, new replicas destinations
     (a broker can be both and is evaluated once per role);
  3. a nonzero admin override is used verbatim for every broker and role;
  4. otherwise metrics + Limits.replication_headroom, with per-broker failure
     counting (reuse the last rate below the threshold, minimum at/after it);
  5. hysteresis: computed rates are written only when they move by at least
     change_threshold percent; overrides and fallbacks are always written;
  6. one write per changed broker carrying all of its role rates, then events
     and Prometheus counters.

Ticks never overlap: `run()` awaits each tick before sleeping the remainder of
the interval. ThrottleState belongs to this object alone.
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum

from opentelemetry import trace

from ..core.config import AutothrottleConfig
from ..core.log import get_logger, log_context, swallow
from ..core.time import Clock, SystemClock
from ..core.types import BrokerId, MBps, TopicName
from ..core.utils import fmt_rate
from ..errors import AutothrottleError, InvalidRoleError, LimitsError, OverrideError
from ..kafka.discovery import ReassignmentDiscovery
from ..kafka.events import EventEmitter
from ..kafka.writer import ThrottleWriter
from ..metrics.opentsdb import MetricsProvider
from ..observability.metrics import ServiceMetrics
from ..observability.tracing import traced
from .limits import Limits
from .models import BrokerMetrics, EventKind, Reassignment, ReplicaRole, ThrottleEvent, ThrottleOverrideConfig
from .override import OverrideGovernor
from .state import Key, ThrottleState, exceeds_threshold


class Phase(str, Enum):
    idle = "idle"
    throttling = "throttling"
    skipped = "skipped"  # discovery failed; previous state kept


@dataclass
class TickResult:
    phase: Phase
    applied: dict[Key, MBps] = field(default_factory=dict)
    removed: list[BrokerId] = field(default_factory=list)
    override: bool = False
    override_removed: bool = False


@dataclass(frozen=True)
class _Decision:
    rate: MBps
    forced: bool  # bypasses hysteresis (override or failure fallback)


def classify_roles(reassignments: dict[TopicName, Reassignment]) -> dict[Key, list[TopicName]]:
    """(broker, role) -> topics in which the broker plays that role."""
    out: dict[Key, list[TopicName]] = defaultdict(list)
    for topic in sorted(reassignments):
        r = reassignments[topic]
        for b in sorted(r.sources):
            out[(b, ReplicaRole.source)].append(topic)
        for b in sorted(r.destinations):
            out[(b, ReplicaRole.destination)].append(topic)
    return dict(out)


class ThrottleController:
    def __init__(
        self,
        *,
        cfg: AutothrottleConfig,
        limits: Limits,
        governor: OverrideGovernor,
        discovery: ReassignmentDiscovery,
        metrics: MetricsProvider,
        writer: ThrottleWriter,
        emitter: EventEmitter,
        clock: Clock | None = None,
        stats: ServiceMetrics | None = None,
    ) -> None:
        self.cfg = cfg
        self.limits = limits
        self.governor = governor
        self.discovery = discovery
        self.metrics = metrics
        self.writer = writer
        self.emitter = emitter
        self.clock: Clock = clock or SystemClock()
        self.stats = stats or ServiceMetrics.create()

        self.state = ThrottleState()
        self._throttling = False
        self._idle_ticks = 0
        self._ticks = 0
        self._running = False
        self.log = get_logger("controller")

    @property
    def throttling(self) -> bool:
        return self._throttling

    # ---- loop

    async def run(self) -> None:
        self._running = True
        self.log.info(
            "control loop started",
            event="controller.start",
            interval_sec=self.cfg.interval_sec,
            change_threshold=self.cfg.change_threshold,
            failure_threshold=self.cfg.failure_threshold,
        )
        try:
            while self._running:
                started = self.clock.mono_ms()
                try:
                    await self.tick()
                except Exception:
                    self.log.error("tick crashed", event="controller.tick.crashed", exc_info=True)
                remaining = self.cfg.interval_ms - (self.clock.mono_ms() - started)
                if remaining <= 0:
                    self.log.warning(
                        "tick overran the interval; next tick starts immediately",
                        event="controller.tick.overrun",
                        overrun_ms=-remaining,
                    )
                await self.clock.sleep_ms(max(0, remaining))
        except asyncio.CancelledError:
            self.log.info("control loop cancelled", event="controller.cancelled")
            return
        self.log.info("control loop stopped", event="controller.stop")

    def stop(self) -> None:
        self._running = False

    @traced("autothrottle.tick")
    async def tick(self) -> TickResult:
        self._ticks += 1
        with log_context(tick=self._ticks), self.stats.tick_seconds.time():
            result = await self._tick()
        self.stats.ticks_total.labels(phase=result.phase.value).inc()
        trace.get_current_span().set_attribute("autothrottle.phase", result.phase.value)
        return result

    async def _tick(self) -> TickResult:
        try:
            reassignments = await self.discovery.reassignments()
        except AutothrottleError as e:
            self.log.error(
                "reassignment discovery failed; keeping current throttles",
                event="controller.discovery.error",
                error=str(e),
            )
            return TickResult(phase=Phase.skipped)

        if not reassignments:
            return await self._idle_tick()
        return await self._throttle_tick(reassignments)

    # ---- idle

    async def _idle_tick(self) -> TickResult:
        result = TickResult(phase=Phase.idle)
        was_throttling = self._throttling
        self._throttling = False
        self._idle_ticks += 1
        self.stats.override_active.set(0)

        # Brokers left over from a failed removal are retried on later idle ticks.
        if was_throttling or self.state.brokers():
            brokers = sorted(self.state.brokers())
            result.removed = await self._remove_throttles(brokers)
            for b in result.removed:
                self.state.forget(b)
            self.state.prune()
            await self._emit(
                ThrottleEvent(
                    kind=EventKind.REASSIGNMENT_IDLE,
                    title="no topics undergoing reassignment",
                    text="no partition reassignments in progress; removing broker throttles",
                )
            )
            if result.removed:
                await self._emit(
                    ThrottleEvent(
                        kind=EventKind.THROTTLE_REMOVED,
                        title="throttle removed",
                        text=f"replication throttle removed from brokers {result.removed}",
                        brokers=result.removed,
                    )
                )
            self.log.info(
                "reassignments finished; throttles removed",
                event="controller.idle.clear",
                removed=result.removed,
                pending=sorted(self.state.brokers()),
            )

        if was_throttling:
            result.override_removed = await self._autoremove_override()

        if self.cfg.cleanup_after and self._idle_ticks % self.cfg.cleanup_after == 0:
            result.removed += await self._safety_clear(skip=set(result.removed))
        return result

    async def _remove_throttles(self, brokers: list[BrokerId]) -> list[BrokerId]:
        removed: list[BrokerId] = []
        for b in brokers:
            try:
                await self.writer.remove(b)
            except Exception:
                self.stats.writes_total.labels(op="remove", result="error").inc()
                self.log.error("throttle removal failed", event="controller.remove.error", broker=b, exc_info=True)
                continue
            self.stats.writes_total.labels(op="remove", result="ok").inc()
            self.stats.cleared(b)
            removed.append(b)
        return removed

    async def _safety_clear(self, *, skip: set[BrokerId]) -> list[BrokerId]:
        try:
            brokers = await self.discovery.broker_ids()
        except AutothrottleError as e:
            self.log.warning("periodic throttle cleanup skipped", event="controller.cleanup.error", error=str(e))
            return []
        removed = await self._remove_throttles([b for b in brokers if b not in skip])
        self.log.info("periodic throttle cleanup", event="controller.cleanup", brokers=removed)
        return removed

    async def _autoremove_override(self) -> bool:
        ovr = await self._read_override()
        if not (ovr.active and ovr.auto_remove):
            return False
        try:
            await self.governor.remove()
        except OverrideError as e:
            self.log.error("override autoremove failed", event="controller.override.autoremove.error", error=str(e))
            return False
        self.log.info("throttle override removed after reassignments finished", event="controller.override.autoremove")
        await self._emit(
            ThrottleEvent(
                kind=EventKind.OVERRIDE_REMOVED,
                title="throttle override removed",
                text=f"autoremove override of {ovr.rate}MB/s cleared",
                rate=float(ovr.rate),
            )
        )
        return True

    # ---- throttling

    async def _throttle_tick(self, reassignments: dict[TopicName, Reassignment]) -> TickResult:
        result = TickResult(phase=Phase.throttling)
        self._throttling = True
        self._idle_ticks = 0

        participants = classify_roles(reassignments)
        self.state.prune(keep=set(participants))
        ovr = await self._read_override()
        self.stats.override_active.set(1 if ovr.active else 0)
        if ovr.active:
            result.override = True
            desired = {key: _Decision(float(ovr.rate), forced=True) for key in participants}
            self.log.info("using throttle override", event="controller.override", rate=ovr.rate)
        else:
            desired = await self._computed_rates(sorted(participants))

        changes = self._changes(desired)
        stale = [key for key in self.state.applied() if key not in participants]
        result.applied, result.removed = await self._write(changes, stale, participants)

        topics = sorted(reassignments)
        brokers = sorted({b for b, _role in participants})
        await self._emit(
            ThrottleEvent(
                kind=EventKind.THROTTLE_SUMMARY,
                title="replication throttle update",
                text=(
                    f"topics undergoing reassignment: {', '.join(topics)}; brokers: {brokers}; "
                    f"{len(result.applied)} throttle(s) updated"
                ),
                topics=topics,
                brokers=brokers,
                rate=float(ovr.rate) if ovr.active else None,
                tags=["override"] if ovr.active else [],
            )
        )
        return result

    async def _read_override(self) -> ThrottleOverrideConfig:
        try:
            return await self.governor.get()
        except OverrideError as e:
            self.log.error("throttle override unreadable; ignoring it", event="controller.override.error", error=str(e))
            return ThrottleOverrideConfig()

    async def _computed_rates(self, keys: list[Key]) -> dict[Key, _Decision]:
        brokers = sorted({b for b, _role in keys})
        try:
            metrics: dict[BrokerId, BrokerMetrics] = await self.metrics.broker_metrics(
                brokers, self.cfg.metrics_window_sec
            )
        except Exception:
            self.log.error("metrics query failed", event="controller.metrics.error", brokers=brokers, exc_info=True)
            metrics = {}

        out: dict[Key, _Decision] = {}
        for broker_id, role in keys:
            entry = self.state.entry(broker_id, role)
            with log_context(broker=broker_id, role=role.value):
                m = metrics.get(broker_id)
                if m is None:
                    out[(broker_id, role)] = self._on_failure(broker_id, role, "metrics unavailable")
                    continue
                try:
                    rate = self.limits.replication_headroom(m, role, entry.rate or 0.0)
                    entry.computed = rate
                except InvalidRoleError as e:
                    out[(broker_id, role)] = self._on_failure(broker_id, role, str(e))
                    continue
                except LimitsError as e:
                    self.log.warning(
                        "cannot compute headroom; applying minimum rate",
                        event="controller.limits.error",
                        error=str(e),
                        rate=e.fallback,
                    )
                    self.stats.fallbacks_total.labels(reason="limits").inc()
                    rate = e.fallback
                    entry.computed = None
                entry.failures = 0
                out[(broker_id, role)] = _Decision(rate, forced=False)
        return out

    def _on_failure(self, broker_id: BrokerId, role: ReplicaRole, reason: str) -> _Decision:
        entry = self.state.entry(broker_id, role)
        entry.failures += 1
        if entry.failures >= self.cfg.failure_threshold:
            self.log.warning(
                "failure threshold reached; falling back to minimum rate",
                event="controller.fallback",
                reason=reason,
                failures=entry.failures,
                rate=self.limits.minimum,
            )
            self.stats.fallbacks_total.labels(reason="failure_threshold").inc()
            return _Decision(self.limits.minimum, forced=True)
        if entry.computed is not None:
            self.log.info(
                "metrics unavailable; keeping last computed rate",
                event="controller.reuse",
                reason=reason,
                failures=entry.failures,
                rate=entry.computed,
            )
            return _Decision(entry.computed, forced=False)
        self.log.warning(
            "metrics unavailable and no computed rate; applying minimum rate",
            event="controller.fallback",
            reason=reason,
            failures=entry.failures,
            rate=self.limits.minimum,
        )
        self.stats.fallbacks_total.labels(reason="no_history").inc()
        return _Decision(self.limits.minimum, forced=True)

    def _changes(self, desired: dict[Key, _Decision]) -> dict[Key, MBps]:
        changes: dict[Key, MBps] = {}
        for (broker_id, role), d in sorted(desired.items()):
            previous = self.state.rate(broker_id, role)
            if previous is not None and d.rate == previous:
                continue
            if d.forced or exceeds_threshold(previous, d.rate, self.cfg.change_threshold):
                changes[(broker_id, role)] = d.rate
            else:
                self.log.debug(
                    "rate change below threshold; keeping current throttle",
                    event="controller.hysteresis",
                    broker=broker_id,
                    role=role.value,
                    previous=previous,
                    desired=d.rate,
                )
        return changes

    async def _write(
        self, changes: dict[Key, MBps], stale: list[Key], participants: dict[Key, list[TopicName]]
    ) -> tuple[dict[Key, MBps], list[BrokerId]]:
        applied: dict[Key, MBps] = {}
        removed: list[BrokerId] = []
        for broker_id in sorted({b for b, _role in [*changes, *stale]}):
            rates = self.state.rates_for(broker_id)
            for b, role in stale:
                if b == broker_id:
                    rates.pop(role, None)
            mine = {role: rate for (b, role), rate in changes.items() if b == broker_id}
            rates.update(mine)

            op = "apply" if rates else "remove"
            with log_context(broker=broker_id):
                try:
                    if rates:
                        await self.writer.apply(broker_id, rates)
                    else:
                        await self.writer.remove(broker_id)
                except Exception:
                    self.stats.writes_total.labels(op=op, result="error").inc()
                    self.log.error("throttle write failed", event="controller.write.error", exc_info=True)
                    continue
            self.stats.writes_total.labels(op=op, result="ok").inc()

            for b, role in stale:
                if b == broker_id:
                    self.state.forget(broker_id, role)
                    self.stats.cleared(broker_id, role.value)
            if not rates:
                removed.append(broker_id)
            for role, rate in mine.items():
                self.state.entry(broker_id, role).rate = rate
                self.stats.applied(broker_id, role.value, rate)
                applied[(broker_id, role)] = rate
                self.log.info(
                    "throttle updated",
                    event="controller.write",
                    broker=broker_id,
                    role=role.value,
                    rate=rate,
                )
                await self._emit(
                    ThrottleEvent(
                        kind=EventKind.THROTTLE_SET,
                        title=f"broker {broker_id} {role.value} throttle set to {fmt_rate(rate)}MB/s",
                        text=f"topics: {', '.join(participants.get((broker_id, role), []))}",
                        topics=participants.get((broker_id, role), []),
                        brokers=[broker_id],
                        role=role,
                        rate=rate,
                    )
                )
        return applied, removed

    async def _emit(self, event: ThrottleEvent) -> None:
        with swallow(
            logger=self.log,
            code="controller.emit",
            msg="event emission failed",
            level=logging.WARNING,
            extra={"kind": event.kind.value},
        ):
            await self.emitter.emit(event)
