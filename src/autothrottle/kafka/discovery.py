# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Reassignment discovery from Kafka's ZooKeeper state.

In-flight reassignments live in /admin/reassign_partitions as
    {"version": 1, "partitions": [{"topic": "t", "partition": 0, "replicas": [1, 2, 3]}]}
and current assignments in /brokers/topics/<topic> as
    {"version": 2, "partitions": {"0": [1, 2, 4]}}

For every reassigning partition the brokers holding it today are sources and
the brokers in the target list that do not hold it yet are destinations.
"""

from typing import Any, Protocol

from ..core.log import get_logger, warn_once
from ..core.types import BrokerId, TopicName
from ..core.utils import loads
from ..errors import DiscoveryError, NoNodeError, StoreError
from ..storage.coordination import CoordinationStore, join_path
from ..throttle.models import Reassignment

REASSIGN_PATH = "/admin/reassign_partitions"
TOPICS_PATH = "/brokers/topics"
BROKER_IDS_PATH = "/brokers/ids"


class ReassignmentDiscovery(Protocol):
    async def reassignments(self) -> dict[TopicName, Reassignment]: ...
    async def broker_ids(self) -> list[BrokerId]: ...
    async def broker_host(self, broker_id: BrokerId) -> str: ...


def _decode(raw: bytes, path: str) -> Any:
    try:
        return loads(raw)
    except ValueError as e:
        raise DiscoveryError(f"{path}: invalid JSON: {e}") from e


def parse_reassign_partitions(raw: bytes) -> dict[TopicName, dict[int, list[BrokerId]]]:
    """Target replica lists per topic/partition from a reassign_partitions payload."""
    if not raw.strip():
        return {}
    data = _decode(raw, REASSIGN_PATH)
    out: dict[TopicName, dict[int, list[BrokerId]]] = {}
    try:
        for p in data.get("partitions") or []:
            out.setdefault(p["topic"], {})[int(p["partition"])] = [int(b) for b in p.get("replicas") or []]
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise DiscoveryError(f"{REASSIGN_PATH}: malformed payload: {e!r}") from e
    return out


def parse_topic_assignment(raw: bytes, topic: TopicName) -> dict[int, list[BrokerId]]:
    path = join_path(TOPICS_PATH, topic)
    data = _decode(raw, path)
    try:
        return {int(p): [int(b) for b in replicas] for p, replicas in (data.get("partitions") or {}).items()}
    except (AttributeError, TypeError, ValueError) as e:
        raise DiscoveryError(f"{path}: malformed payload: {e!r}") from e


def classify(
    target: dict[int, list[BrokerId]], current: dict[int, list[BrokerId]], topic: TopicName
) -> Reassignment:
    r = Reassignment(topic=topic)
    for partition, new_replicas in target.items():
        old = set(current.get(partition) or [])
        r.sources |= old
        r.destinations |= set(new_replicas) - old
    return r


class ZooKeeperDiscovery:
    def __init__(self, store: CoordinationStore) -> None:
        self.store = store
        self.log = get_logger("discovery")

    async def reassignments(self) -> dict[TopicName, Reassignment]:
        try:
            raw = await self.store.get(REASSIGN_PATH)
        except NoNodeError:
            return {}
        except StoreError as e:
            raise DiscoveryError(f"reading {REASSIGN_PATH} failed: {e}") from e

        out: dict[TopicName, Reassignment] = {}
        for topic, target in parse_reassign_partitions(raw).items():
            path = join_path(TOPICS_PATH, topic)
            try:
                current = parse_topic_assignment(await self.store.get(path), topic)
            except NoNodeError:
                warn_once(
                    self.log,
                    f"discovery.topic.missing.{topic}",
                    "reassigning topic has no assignment",
                    event="discovery.topic.missing",
                    topic=topic,
                )
                current = {}
            except StoreError as e:
                raise DiscoveryError(f"reading {path} failed: {e}") from e
            out[topic] = classify(target, current, topic)
        self.log.debug("reassignments discovered", event="discovery.reassignments", topics=sorted(out))
        return out

    async def broker_ids(self) -> list[BrokerId]:
        try:
            names = await self.store.children(BROKER_IDS_PATH)
        except StoreError as e:
            raise DiscoveryError(f"listing {BROKER_IDS_PATH} failed: {e}") from e
        return sorted(int(n) for n in names if n.isdigit())

    async def broker_host(self, broker_id: BrokerId) -> str:
        path = join_path(BROKER_IDS_PATH, str(broker_id))
        try:
            data = _decode(await self.store.get(path), path)
        except StoreError as e:
            raise DiscoveryError(f"reading {path} failed: {e}") from e
        host = data.get("host") if isinstance(data, dict) else None
        if not host:
            raise DiscoveryError(f"{path}: no host registered")
        return str(host)
