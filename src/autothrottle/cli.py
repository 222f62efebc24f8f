from __future__ import annotations

"""
Entry point: parse flags, wire collaborators, run the control loop and the
admin API in one event loop.

All fatal decisions are made here. Library code raises; this module logs the
reason and returns a non-zero exit status.
"""

import argparse
import asyncio
import json
import os
import sys
from typing import Any

import uvicorn

from .api.server import create_app
from .context import AppContext
from .core.config import AutothrottleConfig
from .core.log import configure_from_env, enable_stdout_logging, get_logger
from .errors import AutothrottleError, ConfigError
from .kafka.discovery import ZooKeeperDiscovery
from .kafka.events import EventEmitter, KafkaEventEmitter, LogEventEmitter
from .kafka.writer import KafkaThrottleWriter
from .metrics.opentsdb import OpenTSDBMetrics
from .observability.tracing import setup_tracing
from .storage.zookeeper import KazooCoordinationStore
from .throttle.controller import ThrottleController

log = get_logger("cli")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="autothrottle",
        description="Adaptive replication throttling for Kafka partition reassignments.",
    )
    p.add_argument("--config", help="JSON config file (flags and env override it)")
    p.add_argument("--interval", dest="interval_sec", type=float, help="seconds between ticks")
    p.add_argument("--change-threshold", type=float, help="minimum rate change (percent) that triggers a write")
    p.add_argument("--cleanup-after", type=int, help="idle ticks between safety-net throttle clears (0 disables)")
    p.add_argument("--failure-threshold", type=int, help="consecutive metrics failures before the minimum rate")
    p.add_argument("--min-rate", type=float, help="minimum replication throttle, MB/s")
    p.add_argument("--max-rate", type=float, help="legacy portion of free capacity, percent")
    p.add_argument("--max-tx-rate", type=float, help="portion of free capacity for source brokers, percent")
    p.add_argument("--max-rx-rate", type=float, help="portion of free capacity for destination brokers, percent")
    p.add_argument("--metrics-window", dest="metrics_window_sec", type=int, help="metrics window, seconds")
    p.add_argument("--cap-map", type=json.loads, help='JSON map of instance type to capacity MB/s, e.g. {"r5.xlarge": 150}')
    p.add_argument("--zk-addr", help="ZooKeeper connect string")
    p.add_argument("--zk-prefix", help="ZooKeeper namespace for autothrottle state")
    p.add_argument("--api-listen", help="admin API listen address host:port")
    p.add_argument("--kafka-bootstrap", help="Kafka bootstrap servers")
    p.add_argument("--opentsdb-url", help="OpenTSDB base URL")
    p.add_argument("--event-topic", help="Kafka topic for throttle events (empty: log only)")
    p.add_argument("--otlp-endpoint", help="OTLP gRPC collector for tick traces")
    p.add_argument("--dry-run", action="store_true", default=None, help="compute and log rates without applying them")
    p.add_argument("--log-level", default=os.getenv("AUTOTHROTTLE_LOG_LEVEL", "INFO"))
    p.add_argument("--log-pretty", action="store_true", help="human-readable logs instead of JSON")
    return p


def overrides_from_args(args: argparse.Namespace) -> dict[str, Any]:
    skip = {"config", "log_level", "log_pretty"}
    return {k: v for k, v in vars(args).items() if k not in skip and v is not None}


async def serve(cfg: AutothrottleConfig) -> None:
    if cfg.otlp_endpoint:
        setup_tracing(service_name="autothrottle", otlp_endpoint=cfg.otlp_endpoint)
    store = KazooCoordinationStore(cfg.zk_addr, timeout_sec=cfg.zk_timeout_sec)
    await store.start()
    writer = KafkaThrottleWriter(cfg.kafka_bootstrap, dry_run=cfg.dry_run)
    emitter: EventEmitter = LogEventEmitter()
    metrics: OpenTSDBMetrics | None = None
    try:
        ctx = AppContext.build(cfg, store)
        await ctx.governor.bootstrap()

        discovery = ZooKeeperDiscovery(store)
        metrics = OpenTSDBMetrics(
            cfg.opentsdb_url,
            discovery.broker_host,
            net_tx_metric=cfg.net_tx_metric,
            net_rx_metric=cfg.net_rx_metric,
            host_tag=cfg.host_tag,
            instance_type_tag=cfg.instance_type_tag,
            timeout_sec=cfg.metrics_timeout_sec,
        )
        await writer.start()
        if cfg.event_topic:
            emitter = KafkaEventEmitter(cfg.kafka_bootstrap, cfg.event_topic, tags=[f"zk_prefix:{cfg.zk_prefix}"])
            await emitter.start()

        controller = ThrottleController(
            cfg=cfg,
            limits=ctx.limits,
            governor=ctx.governor,
            discovery=discovery,
            metrics=metrics,
            writer=writer,
            emitter=emitter,
            stats=ctx.stats,
        )
        server = uvicorn.Server(
            uvicorn.Config(create_app(ctx), host=cfg.api_host, port=cfg.api_port, log_config=None, access_log=False)
        )
        api_task = asyncio.create_task(server.serve(), name="admin-api")
        loop_task = asyncio.create_task(controller.run(), name="controller")
        log.info("autothrottle running", event="cli.started", api=cfg.api_listen, zk=cfg.zk_addr)

        await asyncio.wait({api_task, loop_task}, return_when=asyncio.FIRST_COMPLETED)
        controller.stop()
        loop_task.cancel()
        await asyncio.gather(loop_task, return_exceptions=True)
        if api_task.done() and not api_task.cancelled() and api_task.exception() is not None:
            raise api_task.exception()
        if not server.started:
            raise ConfigError(f"admin API could not listen on {cfg.api_listen}")
    finally:
        if isinstance(emitter, KafkaEventEmitter):
            await emitter.stop()
        await writer.stop()
        if metrics is not None:
            await metrics.aclose()
        await store.stop()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_from_env()
    if os.getenv("AUTOTHROTTLE_LOG_STDOUT") is None:
        enable_stdout_logging(level=args.log_level, json_output=not args.log_pretty, pretty=args.log_pretty)

    try:
        cfg = AutothrottleConfig.load(args.config, overrides=overrides_from_args(args))
    except ConfigError as e:
        log.critical("invalid configuration", event="cli.config.error", error=str(e))
        return 2

    log.info("configuration loaded", event="cli.config", cfg=cfg.as_dict())
    try:
        asyncio.run(serve(cfg))
    except AutothrottleError as e:
        log.critical("fatal startup error", event="cli.fatal", error=str(e), error_type=type(e).__name__)
        return 1
    except KeyboardInterrupt:
        pass
    log.info("autothrottle stopped", event="cli.stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
