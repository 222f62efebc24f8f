# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
ZooKeeper-backed CoordinationStore using kazoo.

kazoo's client is synchronous (it runs its own connection thread), so every
call is offloaded with asyncio.to_thread to keep the event loop responsive for
the admin API while a tick is talking to ZooKeeper.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import TypeVar

from kazoo.client import KazooClient
from kazoo.exceptions import KazooException
from kazoo.exceptions import NodeExistsError as KazooNodeExists
from kazoo.exceptions import NoNodeError as KazooNoNode
from kazoo.handlers.threading import KazooTimeoutError

from ..core.log import get_logger, swallow
from ..errors import NodeExistsError, NoNodeError, StoreError

T = TypeVar("T")


class KazooCoordinationStore:
    def __init__(self, hosts: str, *, timeout_sec: float = 10.0, client: KazooClient | None = None) -> None:
        self.hosts = hosts
        self.timeout_sec = timeout_sec
        self._zk = client or KazooClient(hosts=hosts, timeout=timeout_sec)
        self.log = get_logger("storage.zookeeper")

    async def start(self) -> None:
        try:
            await asyncio.to_thread(self._zk.start, self.timeout_sec)
        except (KazooTimeoutError, KazooException) as e:
            raise StoreError(f"cannot connect to zookeeper at {self.hosts}: {e}") from e
        self.log.info("zookeeper connected", event="zk.connected", hosts=self.hosts)

    async def stop(self) -> None:
        with swallow(logger=self.log, code="zk.stop", msg="zookeeper stop failed", level=logging.WARNING):
            await asyncio.to_thread(self._zk.stop)
            await asyncio.to_thread(self._zk.close)

    async def _call(self, path: str, fn: Callable[..., T], *args) -> T:
        try:
            return await asyncio.to_thread(fn, *args)
        except KazooNoNode as e:
            raise NoNodeError(f"{path}: no such node") from e
        except KazooNodeExists as e:
            raise NodeExistsError(f"{path}: node exists") from e
        except (KazooTimeoutError, KazooException) as e:
            raise StoreError(f"{path}: {e.__class__.__name__}: {e}") from e

    async def exists(self, path: str) -> bool:
        return await self._call(path, self._zk.exists, path) is not None

    async def get(self, path: str) -> bytes:
        data, _stat = await self._call(path, self._zk.get, path)
        return data or b""

    async def set(self, path: str, value: bytes) -> None:
        await self._call(path, self._zk.set, path, value)

    async def create(self, path: str, value: bytes = b"") -> None:
        await self._call(path, self._zk.create, path, value)

    async def children(self, path: str) -> list[str]:
        return list(await self._call(path, self._zk.get_children, path))
