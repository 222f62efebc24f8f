# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Event emission for external observability.

KafkaEventEmitter publishes each ThrottleEvent as compact JSON to a topic
(keyed by event kind); LogEventEmitter only logs. Emission is best-effort:
failures are logged and never interrupt the control loop.
"""

import logging
from typing import Protocol

from aiokafka import AIOKafkaProducer

from ..core.log import get_logger, swallow
from ..core.utils import dumps
from ..throttle.models import ThrottleEvent


class EventEmitter(Protocol):
    async def emit(self, event: ThrottleEvent) -> None: ...


class LogEventEmitter:
    def __init__(self) -> None:
        self.log = get_logger("events")

    async def emit(self, event: ThrottleEvent) -> None:
        self.log.info(event.title, event=event.kind.value, payload=event.model_dump(mode="json"))


class KafkaEventEmitter:
    def __init__(self, bootstrap: str, topic: str, *, tags: list[str] | None = None) -> None:
        self.bootstrap = bootstrap
        self.topic = topic
        self.tags = list(tags or [])
        self._producer: AIOKafkaProducer | None = None
        self.log = get_logger("events.kafka")

    async def start(self) -> None:
        self._producer = AIOKafkaProducer(bootstrap_servers=self.bootstrap, value_serializer=dumps)
        await self._producer.start()

    async def stop(self) -> None:
        if self._producer is not None:
            with swallow(logger=self.log, code="events.producer.stop", msg="event producer stop failed"):
                await self._producer.stop()
        self._producer = None

    async def emit(self, event: ThrottleEvent) -> None:
        if self._producer is None:
            raise RuntimeError("KafkaEventEmitter producer is not initialized")
        payload = event.model_dump(mode="json")
        payload["tags"] = [*self.tags, *payload["tags"]]
        with swallow(
            logger=self.log,
            code="events.emit",
            msg="event emission failed",
            level=logging.WARNING,
            extra={"kind": event.kind.value, "topic": self.topic},
        ):
            await self._producer.send_and_wait(self.topic, payload, key=event.kind.value.encode("utf-8"))
