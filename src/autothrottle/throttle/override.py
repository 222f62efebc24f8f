from __future__ import annotations

"""
Persisted throttle override.

A single record at /<prefix>/override_rate holds the operator override as
compact JSON {"rate": <MB/s>, "autoremove": <bool>}. Early deployments stored
a bare integer ("150"); `bootstrap()` upgrades such records in place.

Writes replace the whole record. The admin API and the control loop's
autoremove both write here without coordination: last write wins.
"""

from pydantic import ValidationError

from ..core.log import get_logger
from ..core.utils import dumps, loads
from ..errors import (
    NodeExistsError,
    OverrideBootstrapError,
    OverrideDecodeError,
    OverrideStoreError,
    StoreError,
)
from ..storage.coordination import CoordinationStore, join_path, parent_path
from .models import ThrottleOverrideConfig

OVERRIDE_NODE = "override_rate"


def _legacy_rate(raw: bytes) -> int | None:
    """Rate from a legacy bare-integer record, or None if `raw` is not one."""
    text = raw.decode("utf-8", errors="replace").strip()
    try:
        return int(text)
    except ValueError:
        return None


def decode_override(raw: bytes) -> ThrottleOverrideConfig:
    if not raw.strip():
        return ThrottleOverrideConfig()
    try:
        data = loads(raw)
    except ValueError as e:
        raise OverrideDecodeError(f"invalid throttle override record: {e}") from e
    if not isinstance(data, dict):
        raise OverrideDecodeError(f"invalid throttle override record: expected an object, got {type(data).__name__}")
    try:
        return ThrottleOverrideConfig.model_validate(data)
    except ValidationError as e:
        raise OverrideDecodeError(f"invalid throttle override record: {e.errors()[0]['msg']}") from e


def encode_override(cfg: ThrottleOverrideConfig) -> bytes:
    return dumps(cfg.to_record())


class OverrideGovernor:
    def __init__(self, store: CoordinationStore, path: str) -> None:
        self.store = store
        self.path = path
        self.log = get_logger("override")

    @classmethod
    def for_prefix(cls, store: CoordinationStore, prefix: str) -> OverrideGovernor:
        return cls(store, join_path(prefix, OVERRIDE_NODE))

    async def bootstrap(self) -> None:
        """
        Make sure the record exists and is in the structured format.
        Raises OverrideBootstrapError; callers treat it as fatal.
        """
        try:
            exists = await self.store.exists(self.path)
            if not exists:
                await self._create_missing()
                return
            raw = await self.store.get(self.path)
        except StoreError as e:
            raise OverrideBootstrapError(f"override record bootstrap failed: {e}") from e

        rate = _legacy_rate(raw)
        if rate is None:
            return
        try:
            await self.set(ThrottleOverrideConfig(rate=max(rate, 0)))
        except OverrideStoreError as e:
            raise OverrideBootstrapError(f"override record migration failed: {e}") from e
        self.log.info("throttle override config format updated", event="override.migrated", path=self.path, rate=rate)

    async def _create_missing(self) -> None:
        parent = parent_path(self.path)
        for node in (parent, self.path):
            if node == "/":
                continue
            try:
                await self.store.create(node, b"")
            except NodeExistsError:
                continue
        self.log.info("override record created", event="override.created", path=self.path)

    async def get(self) -> ThrottleOverrideConfig:
        try:
            raw = await self.store.get(self.path)
        except StoreError as e:
            raise OverrideStoreError(f"reading throttle override failed: {e}") from e
        return decode_override(raw)

    async def set(self, cfg: ThrottleOverrideConfig) -> None:
        try:
            await self.store.set(self.path, encode_override(cfg))
        except StoreError as e:
            raise OverrideStoreError(f"writing throttle override failed: {e}") from e
        self.log.info(
            "throttle override stored", event="override.set", path=self.path, rate=cfg.rate, auto_remove=cfg.auto_remove
        )

    async def remove(self) -> None:
        await self.set(ThrottleOverrideConfig(rate=0, auto_remove=False))
