# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Administrative HTTP API for the throttle override.

Response bodies are plain text and part of the operator-facing contract
(scripts grep them), including trailing newlines. Parameter errors are reported
in the body with status 200; only a wrong method changes the status (405).

A global override is addressed by /throttle; /throttle/<broker_id> is reserved
for per-broker overrides and currently behaves like the global route.
"""

import re

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse, Response
from starlette.datastructures import QueryParams

from ..context import AppContext
from ..core.log import get_logger
from ..core.utils import fmt_bool, parse_bool
from ..errors import OverrideError
from ..observability.metrics import CONTENT_TYPE_LATEST, render
from ..throttle.models import ThrottleOverrideConfig
from ..throttle.override import OverrideGovernor

DISALLOWED_METHOD = "disallowed method\n"
ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]

_INT_RE = re.compile(r"[+-]?\d+")

log = get_logger("api")


class ParamError(ValueError):
    """Invalid query parameter; the message is the response body."""


def parse_rate_param(params: QueryParams) -> int:
    raw = params.get("rate")
    if raw is None:
        raise ParamError("rate param must be supplied\n")
    if not _INT_RE.fullmatch(raw) or int(raw) < 0:
        raise ParamError("rate param must be supplied as a non-negative integer\n")
    return int(raw)


def parse_autoremove_param(params: QueryParams) -> bool:
    raw = params.get("autoremove")
    if raw is None:
        return False
    try:
        return parse_bool(raw)
    except ValueError:
        raise ParamError("autoremove param must be a bool\n") from None


def _text(body: str, status_code: int = 200) -> PlainTextResponse:
    return PlainTextResponse(body, status_code=status_code)


def _disallowed() -> PlainTextResponse:
    return _text(DISALLOWED_METHOD, status_code=405)


async def get_throttle(gov: OverrideGovernor) -> PlainTextResponse:
    try:
        cfg = await gov.get()
    except OverrideError as e:
        return _text(str(e))
    if not cfg.active:
        return _text("no throttle override is set\n")
    return _text(f"a throttle override is configured at {cfg.rate}MB/s, autoremove=={fmt_bool(cfg.auto_remove)}\n")


async def set_throttle(gov: OverrideGovernor, request: Request) -> PlainTextResponse:
    try:
        rate = parse_rate_param(request.query_params)
        auto_remove = parse_autoremove_param(request.query_params)
    except ParamError as e:
        return _text(str(e))

    try:
        await gov.set(ThrottleOverrideConfig(rate=rate, auto_remove=auto_remove))
    except OverrideError as e:
        return _text(f"{e}\n")
    return _text(f"throttle successfully set to {rate}MB/s, autoremove=={fmt_bool(auto_remove)}\n")


async def remove_throttle(gov: OverrideGovernor) -> PlainTextResponse:
    try:
        await gov.remove()
    except OverrideError as e:
        return _text(f"{e}\n")
    return _text("throttle successfully removed\n")


def create_app(ctx: AppContext) -> FastAPI:
    gov = ctx.governor
    app = FastAPI(title="autothrottle", docs_url=None, redoc_url=None, openapi_url=None, redirect_slashes=False)
    app.state.ctx = ctx

    @app.middleware("http")
    async def log_request(request: Request, call_next) -> Response:
        log.info(
            "api request",
            event="api.request",
            method=request.method,
            path=request.url.path,
            query=str(request.query_params),
        )
        return await call_next(request)

    async def throttle_get_set(request: Request) -> Response:
        if request.method == "GET":
            return await get_throttle(gov)
        if request.method == "POST":
            return await set_throttle(gov, request)
        return _disallowed()

    async def throttle_remove(request: Request) -> Response:
        if request.method == "POST":
            return await remove_throttle(gov)
        return _disallowed()

    # Deprecated single-purpose routes.
    async def get_throttle_deprecated(request: Request) -> Response:
        if request.method == "GET":
            return await get_throttle(gov)
        return _disallowed()

    async def set_throttle_deprecated(request: Request) -> Response:
        if request.method == "POST":
            return await set_throttle(gov, request)
        return _disallowed()

    async def remove_throttle_deprecated(request: Request) -> Response:
        if request.method == "POST":
            return await remove_throttle(gov)
        return _disallowed()

    async def metrics(request: Request) -> Response:
        if request.method == "GET":
            return Response(render(ctx.stats), media_type=CONTENT_TYPE_LATEST)
        return _disallowed()

    # /throttle/remove* must be registered before /throttle/{broker_id}.
    routes = [
        ("/throttle", throttle_get_set),
        ("/throttle/", throttle_get_set),
        ("/throttle/remove", throttle_remove),
        ("/throttle/remove/", throttle_remove),
        ("/throttle/remove/{broker_id}", throttle_remove),
        ("/throttle/{broker_id}", throttle_get_set),
        ("/get_throttle", get_throttle_deprecated),
        ("/set_throttle", set_throttle_deprecated),
        ("/remove_throttle", remove_throttle_deprecated),
        ("/metrics", metrics),
    ]
    for path, endpoint in routes:
        app.add_api_route(path, endpoint, methods=ALL_METHODS, include_in_schema=False)
    return app
