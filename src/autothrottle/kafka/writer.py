# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Broker-level replication throttle writer.

Source brokers are throttled through `leader.replication.throttled.rate`,
destination brokers through `follower.replication.throttled.rate` (bytes/s).

AlterConfigs is not incremental: the request replaces the broker's dynamic
config set, so every call carries both role rates the broker should hold and
removal sends an empty set. Brokers managed by autothrottle are expected not to
carry unrelated dynamic broker configs.
"""

from collections.abc import Mapping
from typing import Any, Protocol

from aiokafka.admin import AIOKafkaAdminClient
from aiokafka.admin.config_resource import ConfigResource, ConfigResourceType

from ..core.log import get_logger
from ..core.types import BYTES_PER_MB, BrokerId, MBps
from ..errors import ThrottleWriteError
from ..throttle.models import ReplicaRole

ROLE_CONFIG: dict[ReplicaRole, str] = {
    ReplicaRole.source: "leader.replication.throttled.rate",
    ReplicaRole.destination: "follower.replication.throttled.rate",
}


class ThrottleWriter(Protocol):
    async def apply(self, broker_id: BrokerId, rates: Mapping[ReplicaRole, MBps]) -> None: ...
    async def remove(self, broker_id: BrokerId) -> None: ...


def broker_configs(rates: Mapping[ReplicaRole, MBps]) -> dict[str, str]:
    return {ROLE_CONFIG[ReplicaRole(role)]: str(int(rate * BYTES_PER_MB)) for role, rate in rates.items()}


def _raise_for_errors(result: Any, broker_id: BrokerId) -> None:
    responses = result if isinstance(result, list) else [result]
    for resp in responses:
        for res in getattr(resp, "resources", None) or []:
            error_code, error_message = res[0], res[1]
            if error_code:
                raise ThrottleWriteError(f"broker {broker_id}: alter configs failed ({error_code}): {error_message}")


class KafkaThrottleWriter:
    def __init__(self, bootstrap: str, *, dry_run: bool = False) -> None:
        self.bootstrap = bootstrap
        self.dry_run = dry_run
        self._admin: AIOKafkaAdminClient | None = None
        self.log = get_logger("kafka.writer")

    async def start(self) -> None:
        if self.dry_run:
            self.log.info("dry run: broker configs will not be altered", event="writer.dry_run.enabled")
            return
        admin = AIOKafkaAdminClient(bootstrap_servers=self.bootstrap)
        try:
            await admin.start()
        except Exception as e:
            raise ThrottleWriteError(f"cannot connect to kafka at {self.bootstrap}: {e}") from e
        self._admin = admin

    async def stop(self) -> None:
        if self._admin is not None:
            await self._admin.close()
        self._admin = None

    async def _alter(self, broker_id: BrokerId, configs: dict[str, str]) -> None:
        if self.dry_run:
            self.log.info("dry run: broker config not altered", event="writer.dry_run", broker=broker_id, configs=configs)
            return
        if self._admin is None:
            raise ThrottleWriteError("KafkaThrottleWriter is not started")
        resource = ConfigResource(ConfigResourceType.BROKER, str(broker_id), configs=configs)
        try:
            result = await self._admin.alter_configs([resource])
        except Exception as e:
            raise ThrottleWriteError(f"broker {broker_id}: alter configs failed: {e}") from e
        _raise_for_errors(result, broker_id)

    async def apply(self, broker_id: BrokerId, rates: Mapping[ReplicaRole, MBps]) -> None:
        configs = broker_configs(rates)
        await self._alter(broker_id, configs)
        self.log.debug("broker throttle applied", event="writer.apply", broker=broker_id, configs=configs)

    async def remove(self, broker_id: BrokerId) -> None:
        await self._alter(broker_id, {})
        self.log.debug("broker throttle removed", event="writer.remove", broker=broker_id)
