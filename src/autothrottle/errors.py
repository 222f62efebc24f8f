# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Error taxonomy for autothrottle.

Startup errors (ConfigError, LimitsConfigError, OverrideBootstrapError) are
fatal and handled by the entry point. Everything raised during a control-loop
tick is logged and the loop moves on to the next broker or the next tick.
"""


class AutothrottleError(Exception):
    """Base class for all autothrottle errors."""


class ConfigError(AutothrottleError):
    """Invalid service configuration."""


# ---- limits


class LimitsError(AutothrottleError):
    """
    Rate computation failed. `fallback` is the rate a caller may apply instead:
    the configured minimum for missing brokers and unknown instance types, 0.0
    for an invalid role (which callers must not apply).
    """

    def __init__(self, message: str, *, fallback: float) -> None:
        super().__init__(message)
        self.fallback = fallback


class LimitsConfigError(ConfigError):
    """Limits scalars out of range."""


class BrokerMissingError(LimitsError):
    pass


class UnknownInstanceTypeError(LimitsError):
    pass


class InvalidRoleError(LimitsError):
    pass


# ---- coordination store


class StoreError(AutothrottleError):
    """Coordination store operation failed."""


class NoNodeError(StoreError):
    pass


class NodeExistsError(StoreError):
    pass


# ---- override record


class OverrideError(AutothrottleError):
    pass


class OverrideBootstrapError(OverrideError):
    """The override record could not be created or migrated at startup."""


class OverrideDecodeError(OverrideError):
    """The stored override record is in neither the structured nor the legacy format."""


class OverrideStoreError(OverrideError):
    """Reading or writing the override record failed."""


# ---- collaborators


class DiscoveryError(AutothrottleError):
    """Reassignment state could not be read."""


class MetricsError(AutothrottleError):
    """Metrics backend query failed."""


class ThrottleWriteError(AutothrottleError):
    """Applying or removing a broker throttle failed."""
