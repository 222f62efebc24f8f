# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Administrative HTTP API (throttle override read/set/remove).
"""

from .server import DISALLOWED_METHOD, ParamError, create_app

__all__ = ["DISALLOWED_METHOD", "ParamError", "create_app"]
