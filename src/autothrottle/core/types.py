from __future__ import annotations

"""
autothrottle.core.types
=======================

Shared aliases. Keep this module tiny and dependency-free.
"""

from typing import Final

Millis = int
Seconds = float

BrokerId = int
TopicName = str
InstanceType = str

# Rates are expressed in MB/s throughout the control plane; Kafka configs take bytes/s.
MBps = float
BYTES_PER_MB: Final[int] = 1_000_000
