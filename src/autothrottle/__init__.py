from __future__ import annotations

try:
    from importlib.metadata import version as _pkg_version

    __version__ = _pkg_version("autothrottle")
except Exception:  # pragma: no cover
    # running from a source checkout without installation
    __version__ = "0.0.0"

from .context import AppContext
from .core.config import AutothrottleConfig
from .throttle.controller import ThrottleController

__all__ = [
    "AppContext",
    "AutothrottleConfig",
    "ThrottleController",
    "__version__",
]
