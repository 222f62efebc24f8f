# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Coordination store interface and its ZooKeeper implementation.
"""

from .coordination import CoordinationStore, NodeExistsError, NoNodeError, StoreError, join_path, parent_path

__all__ = [
    "CoordinationStore",
    "NoNodeError",
    "NodeExistsError",
    "StoreError",
    "join_path",
    "parent_path",
]
