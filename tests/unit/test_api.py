import httpx
import pytest
import pytest_asyncio

from autothrottle.api import DISALLOWED_METHOD, create_app
from autothrottle.core.utils import loads

pytestmark = [pytest.mark.unit, pytest.mark.api]

PATH = "/autothrottle/override_rate"


@pytest_asyncio.fixture
async def client(app_ctx):
    transport = httpx.ASGITransport(app=create_app(app_ctx))
    async with httpx.AsyncClient(transport=transport, base_url="http://autothrottle.test") as c:
        yield c


@pytest.mark.asyncio
async def test_set_get_remove_round_trip(client, store):
    r = await client.post("/throttle", params={"rate": "200", "autoremove": "true"})
    assert r.status_code == 200
    assert r.text == "throttle successfully set to 200MB/s, autoremove==true\n"
    assert loads(store.data[PATH]) == {"rate": 200, "autoremove": True}

    r = await client.get("/throttle")
    assert r.status_code == 200
    assert r.text == "a throttle override is configured at 200MB/s, autoremove==true\n"

    r = await client.post("/throttle/remove")
    assert r.status_code == 200
    assert r.text == "throttle successfully removed\n"

    r = await client.get("/throttle")
    assert r.text == "no throttle override is set\n"


@pytest.mark.asyncio
async def test_autoremove_defaults_to_false(client):
    r = await client.post("/throttle", params={"rate": "50"})
    assert r.text == "throttle successfully set to 50MB/s, autoremove==false\n"


@pytest.mark.asyncio
@pytest.mark.parametrize("value", ["1", "t", "T", "TRUE", "True"])
async def test_autoremove_accepts_true_spellings(client, value):
    r = await client.post("/throttle", params={"rate": "50", "autoremove": value})
    assert r.text.endswith("autoremove==true\n")


@pytest.mark.asyncio
async def test_rate_zero_is_stored_as_no_override(client):
    await client.post("/throttle", params={"rate": "0"})
    r = await client.get("/throttle")
    assert r.text == "no throttle override is set\n"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "params,body",
    [
        ({}, "rate param must be supplied\n"),
        ({"rate": "abc"}, "rate param must be supplied as a non-negative integer\n"),
        ({"rate": "-5"}, "rate param must be supplied as a non-negative integer\n"),
        ({"rate": "1.5"}, "rate param must be supplied as a non-negative integer\n"),
        ({"rate": "100", "autoremove": "maybe"}, "autoremove param must be a bool\n"),
    ],
)
async def test_parameter_errors_are_reported_in_body(client, store, params, body):
    r = await client.post("/throttle", params=params)
    assert r.status_code == 200
    assert r.text == body
    assert store.data[PATH] == b""


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "method,path",
    [
        ("GET", "/throttle/remove"),
        ("PUT", "/throttle"),
        ("DELETE", "/throttle"),
        ("POST", "/get_throttle"),
        ("GET", "/set_throttle"),
        ("GET", "/remove_throttle"),
    ],
)
async def test_wrong_method_is_405(client, method, path):
    r = await client.request(method, path)
    assert r.status_code == 405
    assert r.text == DISALLOWED_METHOD


@pytest.mark.asyncio
async def test_trailing_slash_and_broker_routes(client):
    r = await client.post("/throttle/", params={"rate": "70"})
    assert r.text == "throttle successfully set to 70MB/s, autoremove==false\n"

    r = await client.get("/throttle/1001")
    assert r.text == "a throttle override is configured at 70MB/s, autoremove==false\n"

    r = await client.post("/throttle/remove/1001")
    assert r.text == "throttle successfully removed\n"

    r = await client.get("/throttle/")
    assert r.text == "no throttle override is set\n"


@pytest.mark.asyncio
async def test_deprecated_routes(client):
    r = await client.post("/set_throttle", params={"rate": "30", "autoremove": "f"})
    assert r.text == "throttle successfully set to 30MB/s, autoremove==false\n"

    r = await client.get("/get_throttle")
    assert r.text == "a throttle override is configured at 30MB/s, autoremove==false\n"

    r = await client.post("/remove_throttle")
    assert r.text == "throttle successfully removed\n"


@pytest.mark.asyncio
async def test_store_errors_are_reported_in_body(client, store):
    store.fail_ops.add("set")
    r = await client.post("/throttle", params={"rate": "100"})
    assert r.status_code == 200
    assert r.text.startswith("writing throttle override failed:")
    assert r.text.endswith("\n")

    r = await client.post("/throttle/remove")
    assert r.text.startswith("writing throttle override failed:")


@pytest.mark.asyncio
async def test_unreadable_record_is_reported_on_get(client, store):
    store.data[PATH] = b"garbage"
    r = await client.get("/throttle")
    assert r.status_code == 200
    assert r.text.startswith("invalid throttle override record")


@pytest.mark.asyncio
async def test_requests_are_logged(client, caplog):
    caplog.set_level("INFO", logger="autothrottle")
    await client.post("/throttle", params={"rate": "20"})
    rec = next(r for r in caplog.records if getattr(r, "event", "") == "api.request")
    assert rec.method == "POST"
    assert rec.path == "/throttle"
    assert "rate=20" in rec.query
