# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Coordination store interface (hierarchical key/value, ZooKeeper-shaped).

The control plane only needs plain get/set/create/exists/children semantics:
- paths are absolute, slash-separated strings;
- values are raw bytes (callers own the encoding);
- `set` overwrites the whole value (no compare-and-swap);
- `create` fails with NodeExistsError if the path exists and NoNodeError if the
  parent is missing.
"""

from typing import Protocol, runtime_checkable

from ..errors import NodeExistsError, NoNodeError, StoreError

__all__ = [
    "CoordinationStore",
    "NoNodeError",
    "NodeExistsError",
    "StoreError",
    "join_path",
    "parent_path",
]


@runtime_checkable
class CoordinationStore(Protocol):
    async def exists(self, path: str) -> bool: ...

    async def get(self, path: str) -> bytes:
        """Return the node value; NoNodeError if missing."""

    async def set(self, path: str, value: bytes) -> None:
        """Overwrite the node value; NoNodeError if missing."""

    async def create(self, path: str, value: bytes = b"") -> None: ...

    async def children(self, path: str) -> list[str]:
        """Names (not paths) of the direct children; NoNodeError if missing."""


def join_path(*parts: str) -> str:
    segs = [p.strip("/") for p in parts if p and p.strip("/")]
    return "/" + "/".join(segs)


def parent_path(path: str) -> str:
    head = path.rstrip("/").rpartition("/")[0]
    return head or "/"
