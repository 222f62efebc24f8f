from __future__ import annotations

"""
autothrottle.core.config
========================

Typed service configuration.
- Optional JSON file, then environment variables, then explicit overrides.
- Validated once in __post_init__; millisecond fields derived from seconds.
- Limits-specific range checks (minimum/portions) live in throttle.limits so the
  engine validates itself regardless of where its inputs come from.
"""

import json
import os
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from ..errors import ConfigError
from .utils import parse_bool


def _load_json(path: Path | None) -> dict[str, Any]:
    if not path:
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigError(f"config file not found: {path}") from e
    except ValueError as e:
        raise ConfigError(f"config file {path} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a JSON object")
    return data


def _cap_map(raw: str) -> dict[str, float]:
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("capacity map must be a JSON object")
    return {str(k): float(v) for k, v in data.items()}


# env var -> (field, parser)
_ENV: dict[str, tuple[str, Callable[[str], Any]]] = {
    "AUTOTHROTTLE_INTERVAL": ("interval_sec", float),
    "AUTOTHROTTLE_CHANGE_THRESHOLD": ("change_threshold", float),
    "AUTOTHROTTLE_CLEANUP_AFTER": ("cleanup_after", int),
    "AUTOTHROTTLE_FAILURE_THRESHOLD": ("failure_threshold", int),
    "AUTOTHROTTLE_MIN_RATE": ("min_rate", float),
    "AUTOTHROTTLE_MAX_RATE": ("max_rate", float),
    "AUTOTHROTTLE_MAX_TX_RATE": ("max_tx_rate", float),
    "AUTOTHROTTLE_MAX_RX_RATE": ("max_rx_rate", float),
    "AUTOTHROTTLE_METRICS_WINDOW": ("metrics_window_sec", int),
    "AUTOTHROTTLE_CAP_MAP": ("cap_map", _cap_map),
    "AUTOTHROTTLE_ZK_ADDR": ("zk_addr", str),
    "AUTOTHROTTLE_ZK_PREFIX": ("zk_prefix", str),
    "AUTOTHROTTLE_API_LISTEN": ("api_listen", str),
    "AUTOTHROTTLE_EVENT_TOPIC": ("event_topic", str),
    "AUTOTHROTTLE_DRY_RUN": ("dry_run", parse_bool),
    "KAFKA_BOOTSTRAP_SERVERS": ("kafka_bootstrap", str),
    "OPENTSDB_URL": ("opentsdb_url", str),
    "OTEL_EXPORTER_OTLP_ENDPOINT": ("otlp_endpoint", str),
}


@dataclass
class AutothrottleConfig:
    """Control loop, collaborator endpoints and API listener settings."""

    # ---- Loop
    interval_sec: float = 180.0
    change_threshold: float = 10.0  # percent
    cleanup_after: int = 60  # idle ticks between safety-net clears; 0 disables
    failure_threshold: int = 1
    dry_run: bool = False

    # ---- Limits (MB/s and percent of capacity)
    min_rate: float = 10.0
    max_rate: float = 90.0
    max_tx_rate: float = 90.0
    max_rx_rate: float = 90.0
    cap_map: dict[str, float] = field(default_factory=dict)

    # ---- Metrics (OpenTSDB)
    metrics_window_sec: int = 120
    opentsdb_url: str = "http://localhost:4242"
    net_tx_metric: str = "system.net.bytes_sent"
    net_rx_metric: str = "system.net.bytes_rcvd"
    host_tag: str = "host"
    instance_type_tag: str = "instance-type"
    metrics_timeout_sec: float = 30.0

    # ---- ZooKeeper
    zk_addr: str = "localhost:2181"
    zk_prefix: str = "autothrottle"
    zk_timeout_sec: float = 10.0

    # ---- Kafka
    kafka_bootstrap: str = "localhost:9092"
    event_topic: str = ""  # empty -> events are logged only

    # ---- Admin API
    api_listen: str = "localhost:8080"

    # ---- Tracing
    otlp_endpoint: str = ""  # empty -> spans are not exported

    # ---- Derived
    interval_ms: int = field(default=0, init=False)
    api_host: str = field(default="", init=False)
    api_port: int = field(default=0, init=False)

    def __post_init__(self) -> None:
        if self.interval_sec <= 0:
            raise ConfigError("interval_sec must be > 0")
        if self.change_threshold < 0:
            raise ConfigError("change_threshold must be >= 0")
        if self.cleanup_after < 0:
            raise ConfigError("cleanup_after must be >= 0")
        if self.failure_threshold < 1:
            raise ConfigError("failure_threshold must be >= 1")
        if self.metrics_window_sec <= 0:
            raise ConfigError("metrics_window_sec must be > 0")
        if not self.zk_prefix or "/" in self.zk_prefix.strip("/"):
            raise ConfigError("zk_prefix must be a single non-empty path segment")
        self.zk_prefix = self.zk_prefix.strip("/")
        self.cap_map = {str(k): float(v) for k, v in (self.cap_map or {}).items()}
        self.api_host, self.api_port = self._split_listen(self.api_listen)
        self.interval_ms = int(self.interval_sec * 1000)

    @staticmethod
    def _split_listen(listen: str) -> tuple[str, int]:
        host, sep, port = listen.rpartition(":")
        if not sep or not port.isdigit():
            raise ConfigError(f"api_listen must be host:port, got {listen!r}")
        return host or "0.0.0.0", int(port)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def load(cls, path: Path | str | None = None, *, overrides: dict[str, Any] | None = None) -> AutothrottleConfig:
        """
        Load from a JSON file (if given), then environment variables, then overrides.
        Overrides with a None value are ignored so argparse namespaces can be passed as-is.
        """
        data: dict[str, Any] = {}
        data.update(_load_json(Path(path) if path else None))

        for env, (name, parse) in _ENV.items():
            raw = os.getenv(env)
            if not raw:
                continue
            try:
                data[name] = parse(raw)
            except ValueError as e:
                raise ConfigError(f"{env}: {e}") from e

        if overrides:
            data.update({k: v for k, v in overrides.items() if v is not None})

        try:
            return cls(**data)
        except TypeError as e:
            raise ConfigError(str(e)) from e
