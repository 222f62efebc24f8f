from __future__ import annotations

"""
autothrottle.core.log
=====================

Structured logging on top of the standard library:
- contextvars-bound fields (tick, broker, role, ...) merged into every record;
- JSON formatter for containers, compact human formatter for terminals;
- a LoggerAdapter accepting arbitrary keyword fields;
- `swallow(...)` for best-effort blocks that must log instead of raising;
- `warn_once(...)` for warnings that would otherwise repeat every tick.

Importing this module is silent: nothing is printed until an entry point calls
`configure_from_env()` or `enable_stdout_logging()`.
"""

import contextvars
import json
import logging
import os
import sys
import threading
from collections.abc import Mapping
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any, ClassVar, Final

__all__ = [
    "bind_context",
    "configure_from_env",
    "disable_stdout_logging",
    "enable_stdout_logging",
    "get_logger",
    "log_context",
    "set_level",
    "swallow",
    "warn_once",
]

_ROOT_LOGGER: Final[str] = "autothrottle"
_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})

# ---------- Context ----------

_ctx: contextvars.ContextVar[dict[str, Any] | None] = contextvars.ContextVar("autothrottle_log_ctx", default=None)


def _current() -> dict[str, Any]:
    ctx = _ctx.get()
    return dict(ctx) if ctx else {}


def bind_context(**fields: Any) -> None:
    """Merge fields into the logging context of the current task/thread (None values are dropped)."""
    merged = _current()
    merged.update({k: v for k, v in fields.items() if v is not None})
    _ctx.set(merged)


@contextmanager
def log_context(**fields: Any):
    """Add fields to the logging context for the duration of the block."""
    token = _ctx.set({**_current(), **{k: v for k, v in fields.items() if v is not None}})
    try:
        yield
    finally:
        _ctx.reset(token)


# ---------- Formatters ----------

_RESERVED: Final[frozenset[str]] = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "asctime",
        "message",
    }
)


def _utc_iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class JsonFormatter(logging.Formatter):
    """One JSON object per line: ts, level, logger, message, context fields and extras."""

    def __init__(self, *, include_stack: bool = False) -> None:
        super().__init__()
        self.include_stack = include_stack

    def format(self, record: logging.LogRecord) -> str:
        out: dict[str, Any] = {
            "ts": _utc_iso(record.created),
            "level": record.levelname,
            "logger": record.name,
        }
        msg = record.getMessage()
        if msg:
            out["message"] = msg

        ctx = _ctx.get()
        if ctx:
            out.update(ctx)

        for k, v in record.__dict__.items():
            if k in _RESERVED or k in out:
                continue
            out[k] = v

        if record.exc_info:
            etype, evalue = record.exc_info[0], record.exc_info[1]
            err = out.get("error")
            if not isinstance(err, dict):
                err = {} if err is None else {"detail": err}
                out["error"] = err
            err["type"] = etype.__name__ if etype else "Exception"
            err["message"] = str(evalue) if evalue else None
            if self.include_stack:
                err["stack"] = self.formatException(record.exc_info)

        return json.dumps(out, ensure_ascii=False, separators=(",", ":"), default=str)


class HumanFormatter(logging.Formatter):
    """Single-line formatter for terminals; appends the controller context in brackets."""

    default_time_format = "%Y-%m-%d %H:%M:%S"
    default_msec_format = "%s.%03d"
    context_keys: ClassVar[tuple[str, ...]] = ("tick", "broker", "role", "path")

    def format(self, record: logging.LogRecord) -> str:
        line = f"{self.formatTime(record)} {record.levelname:<5} {record.name}: {record.getMessage()}"
        ctx = _ctx.get() or {}
        shown = [f"{k}={ctx[k]}" for k in self.context_keys if ctx.get(k) is not None]
        if shown:
            line += "  [" + ", ".join(shown) + "]"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class ContextFilter(logging.Filter):
    """Copy context fields onto the record so handlers and caplog can see them."""

    def filter(self, record: logging.LogRecord) -> bool:
        for k, v in (_ctx.get() or {}).items():
            record.__dict__.setdefault(k, v)
        return True


class _LevelBand(logging.Filter):
    def __init__(self, *, lo: int = logging.NOTSET, hi: int = logging.CRITICAL) -> None:
        super().__init__()
        self.lo = lo
        self.hi = hi

    def filter(self, record: logging.LogRecord) -> bool:
        return self.lo <= record.levelno <= self.hi


class _FieldsAdapter(logging.LoggerAdapter):
    """
    Adapter that moves unknown keyword arguments into `extra`, so call sites can write
        log.info("throttle applied", event="controller.write", broker=1001, rate=88.0)
    """

    _passthrough: ClassVar[frozenset[str]] = frozenset({"exc_info", "stack_info", "stacklevel", "extra"})

    def process(self, msg, kwargs):
        extra = kwargs.get("extra")
        if not isinstance(extra, dict):
            extra = {}
        for key in [k for k in kwargs if k not in self._passthrough]:
            value = kwargs.pop(key)
            name = f"field_{key}" if key in _RESERVED else key
            extra.setdefault(name, value)
        kwargs["extra"] = extra
        return msg, kwargs


def _adapter(logger: logging.Logger | logging.LoggerAdapter) -> logging.LoggerAdapter:
    return logger if isinstance(logger, logging.LoggerAdapter) else _FieldsAdapter(logger, {})


_seen_codes: set[str] = set()
_seen_lock = threading.Lock()


def warn_once(
    logger: logging.Logger | logging.LoggerAdapter,
    code: str,
    msg: str,
    *,
    level: int = logging.WARNING,
    **extra: Any,
) -> None:
    """Log `msg` the first time `code` is seen in this process; later calls are no-ops."""
    with _seen_lock:
        if code in _seen_codes:
            return
        _seen_codes.add(code)
    _adapter(logger).log(level, msg, code=code, **extra)


# ---------- Configuration ----------

_bootstrapped = False
_HANDLER_OUT = "_autothrottle_stdout"
_HANDLER_ERR = "_autothrottle_stderr"


def _bootstrap() -> None:
    global _bootstrapped
    if _bootstrapped:
        return
    root = logging.getLogger(_ROOT_LOGGER)
    root.setLevel(logging.INFO)
    if not any(isinstance(h, logging.NullHandler) for h in root.handlers):
        root.addHandler(logging.NullHandler())
    if not any(isinstance(f, ContextFilter) for f in root.filters):
        root.addFilter(ContextFilter())
    _bootstrapped = True


def get_logger(name: str | None = None) -> logging.LoggerAdapter:
    """Return an adapter for `autothrottle.<name>` that accepts keyword fields."""
    _bootstrap()
    base = logging.getLogger(_ROOT_LOGGER)
    logger = base.getChild(name) if name else base
    # Logger filters do not run for records propagated from children.
    if not any(isinstance(f, ContextFilter) for f in logger.filters):
        logger.addFilter(ContextFilter())
    return _FieldsAdapter(logger, {})


def _resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        raise ValueError(f"invalid log level: {level!r}")
    return resolved


def set_level(level: int | str) -> None:
    logging.getLogger(_ROOT_LOGGER).setLevel(_resolve_level(level))


def enable_stdout_logging(
    *,
    level: int | str = logging.INFO,
    json_output: bool = True,
    include_stack: bool = False,
    pretty: bool = False,
    route_errors_to_stderr: bool = False,
) -> None:
    """
    Attach stream handlers. `pretty=True` selects HumanFormatter, otherwise
    JSON (or a plain format string when json_output=False). With
    `route_errors_to_stderr=True`, ERROR and above go to stderr.
    """
    lvl = _resolve_level(level)
    _bootstrap()
    root = logging.getLogger(_ROOT_LOGGER)
    disable_stdout_logging()

    fmt: logging.Formatter
    if pretty:
        fmt = HumanFormatter()
    elif json_output:
        fmt = JsonFormatter(include_stack=include_stack)
    else:
        fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")

    out = logging.StreamHandler(sys.stdout)
    out.set_name(_HANDLER_OUT)
    out.setLevel(lvl)
    out.setFormatter(fmt)
    if route_errors_to_stderr:
        out.addFilter(_LevelBand(hi=logging.WARNING))
        err = logging.StreamHandler(sys.stderr)
        err.set_name(_HANDLER_ERR)
        err.setLevel(max(lvl, logging.ERROR))
        err.addFilter(_LevelBand(lo=logging.ERROR))
        err.setFormatter(fmt)
        root.addHandler(err)
    root.addHandler(out)


def disable_stdout_logging() -> None:
    root = logging.getLogger(_ROOT_LOGGER)
    for h in list(root.handlers):
        if h.get_name() in (_HANDLER_OUT, _HANDLER_ERR):
            root.removeHandler(h)


def configure_from_env() -> None:
    """
    Entry-point helper. Honors:
      - AUTOTHROTTLE_LOG_STDOUT=1   attach a stdout handler
      - AUTOTHROTTLE_LOG_LEVEL=INFO
      - AUTOTHROTTLE_LOG_PRETTY=1   human formatter instead of JSON
      - AUTOTHROTTLE_LOG_STACK=1    include tracebacks in JSON records
    """
    level = os.getenv("AUTOTHROTTLE_LOG_LEVEL", "INFO")
    _bootstrap()
    set_level(level)
    if os.getenv("AUTOTHROTTLE_LOG_STDOUT", "").lower() in _TRUTHY:
        pretty = os.getenv("AUTOTHROTTLE_LOG_PRETTY", "").lower() in _TRUTHY
        enable_stdout_logging(
            level=level,
            json_output=not pretty,
            pretty=pretty,
            include_stack=os.getenv("AUTOTHROTTLE_LOG_STACK", "").lower() in _TRUTHY,
        )
    else:
        disable_stdout_logging()


# ---------- Best-effort blocks ----------


@contextmanager
def swallow(
    *,
    logger: logging.Logger | logging.LoggerAdapter | None = None,
    level: int = logging.WARNING,
    code: str,
    msg: str | None = None,
    reraise: bool = False,
    extra: Mapping[str, Any] | None = None,
    expected: bool = True,
):
    """
    Log and suppress exceptions raised inside the block:

        with swallow(logger=log, code="writer.remove", msg="throttle removal failed", extra={"broker": 1001}):
            await writer.remove(1001)
    """
    adapter = _adapter(logger or get_logger("swallow"))
    try:
        yield
    except Exception as e:
        fields: dict[str, Any] = {"code": code, "expected": expected}
        if extra:
            fields.update(extra)
        adapter.log(level, msg or "suppressed exception", exc_info=e, **fields)
        if reraise:
            raise


_bootstrap()
