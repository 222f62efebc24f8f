from __future__ import annotations

"""
autothrottle.core.utils
=======================

Small helpers with no external dependencies.
"""

import json
from typing import Any

_TRUE = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE = frozenset({"0", "f", "F", "FALSE", "false", "False"})


def dumps(x: Any) -> bytes:
    """Compact UTF-8 JSON; the on-store and on-wire encoding."""
    return json.dumps(x, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def loads(b: bytes | str) -> Any:
    if isinstance(b, bytes | bytearray):
        b = b.decode("utf-8")
    return json.loads(b)


def parse_bool(s: str) -> bool:
    """
    Parse the boolean spellings accepted by the admin API and env overrides
    ("1", "t", "true", "TRUE", "0", "f", ...). Raises ValueError otherwise.
    """
    if s in _TRUE:
        return True
    if s in _FALSE:
        return False
    raise ValueError(f"invalid boolean: {s!r}")


def fmt_bool(b: bool) -> str:
    return "true" if b else "false"


def fmt_rate(rate: float) -> str:
    """Render a MB/s figure without trailing zeros (120.0 -> "120", 87.5 -> "87.5")."""
    return f"{rate:.2f}".rstrip("0").rstrip(".")
