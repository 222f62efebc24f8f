# conftest.py
from __future__ import annotations

import os
import uuid

import pytest
import pytest_asyncio

from autothrottle.context import AppContext
from autothrottle.core.config import AutothrottleConfig
from autothrottle.core.log import (
    bind_context,
    configure_from_env,
    enable_stdout_logging,
    get_logger,
    log_context,
)
from autothrottle.core.time import ManualClock
from autothrottle.throttle.controller import ThrottleController
from tests.helpers import FakeDiscovery, FakeMetrics, InMemoryStore, RecordingEmitter, RecordingWriter

_ENV_VARS = (
    "AUTOTHROTTLE_INTERVAL",
    "AUTOTHROTTLE_CHANGE_THRESHOLD",
    "AUTOTHROTTLE_CLEANUP_AFTER",
    "AUTOTHROTTLE_FAILURE_THRESHOLD",
    "AUTOTHROTTLE_MIN_RATE",
    "AUTOTHROTTLE_MAX_RATE",
    "AUTOTHROTTLE_MAX_TX_RATE",
    "AUTOTHROTTLE_MAX_RX_RATE",
    "AUTOTHROTTLE_METRICS_WINDOW",
    "AUTOTHROTTLE_CAP_MAP",
    "AUTOTHROTTLE_ZK_ADDR",
    "AUTOTHROTTLE_ZK_PREFIX",
    "AUTOTHROTTLE_API_LISTEN",
    "AUTOTHROTTLE_EVENT_TOPIC",
    "AUTOTHROTTLE_DRY_RUN",
    "KAFKA_BOOTSTRAP_SERVERS",
    "OPENTSDB_URL",
    "OTEL_EXPORTER_OTLP_ENDPOINT",
)

# Capacities chosen so headroom values come out as round numbers.
CAP_MAP = {"m5.large": 100.0, "m5.xlarge": 200.0, "small": 109.0, "large": 111.0}


def pytest_configure(config):
    config.addinivalue_line("markers", "cfg(**overrides): per-test AutothrottleConfig overrides")


def pytest_addoption(parser):
    parser.addoption(
        "--log-json",
        action="store_true",
        default=False,
        help="Emit autothrottle logs in JSON format during tests",
    )


@pytest.fixture(scope="session", autouse=True)
def _configure_autothrottle_logging(request):
    configure_from_env()
    prefer_json = request.config.getoption("--log-json")
    if os.getenv("AUTOTHROTTLE_LOG_STDOUT", "").lower() not in ("1", "true", "yes", "on"):
        enable_stdout_logging(
            level="DEBUG",
            json_output=prefer_json,
            pretty=not prefer_json,
            route_errors_to_stderr=True,
        )
    bind_context(role="pytest")


@pytest.fixture(scope="session")
def session_run_id():
    return uuid.uuid4().hex[:8]


@pytest.fixture(autouse=True)
def _test_log_context(request, session_run_id):
    log = get_logger("test")
    with log_context(test=request.node.name, test_run=session_run_id):
        log.debug("pytest.test.start", event="pytest.test.start")
        yield


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def cfg(request) -> AutothrottleConfig:
    m = request.node.get_closest_marker("cfg")
    overrides = {
        "interval_sec": 1.0,
        "change_threshold": 10.0,
        "cleanup_after": 0,
        "failure_threshold": 1,
        "min_rate": 10.0,
        "max_rate": 100.0,
        "max_tx_rate": 100.0,
        "max_rx_rate": 100.0,
        "cap_map": dict(CAP_MAP),
        **(m.kwargs if m else {}),
    }
    return AutothrottleConfig.load(overrides=overrides)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest_asyncio.fixture
async def app_ctx(cfg, store) -> AppContext:
    ctx = AppContext.build(cfg, store)
    await ctx.governor.bootstrap()
    return ctx


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(start_ms=1_000)


@pytest.fixture
def discovery() -> FakeDiscovery:
    return FakeDiscovery()


@pytest.fixture
def metrics() -> FakeMetrics:
    return FakeMetrics()


@pytest.fixture
def writer() -> RecordingWriter:
    return RecordingWriter()


@pytest.fixture
def emitter() -> RecordingEmitter:
    return RecordingEmitter()


@pytest.fixture
def controller(app_ctx, discovery, metrics, writer, emitter, clock) -> ThrottleController:
    return ThrottleController(
        cfg=app_ctx.cfg,
        limits=app_ctx.limits,
        governor=app_ctx.governor,
        discovery=discovery,
        metrics=metrics,
        writer=writer,
        emitter=emitter,
        clock=clock,
        stats=app_ctx.stats,
    )


@pytest.fixture
def tlog():
    return get_logger("test")
