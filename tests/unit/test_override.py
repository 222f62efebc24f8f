import pytest

from autothrottle.core.utils import loads
from autothrottle.errors import OverrideBootstrapError, OverrideDecodeError, OverrideStoreError
from autothrottle.throttle.models import ThrottleOverrideConfig
from autothrottle.throttle.override import OverrideGovernor, decode_override, encode_override
from tests.helpers import InMemoryStore

pytestmark = [pytest.mark.unit]

PATH = "/autothrottle/override_rate"


def _gov(store: InMemoryStore) -> OverrideGovernor:
    return OverrideGovernor.for_prefix(store, "autothrottle")


def test_for_prefix_builds_record_path():
    assert _gov(InMemoryStore()).path == PATH


def test_encode_uses_wire_field_names():
    raw = encode_override(ThrottleOverrideConfig(rate=150, auto_remove=True))
    assert raw == b'{"rate":150,"autoremove":true}'


@pytest.mark.parametrize("raw", [b"", b"   ", b"\n"])
def test_empty_record_means_no_override(raw):
    cfg = decode_override(raw)
    assert cfg.rate == 0 and cfg.auto_remove is False
    assert not cfg.active


@pytest.mark.parametrize("raw", [b"abc", b"[1,2]", b'{"rate":-5}', b'{"rate":"fast"}'])
def test_undecodable_record_raises(raw):
    with pytest.raises(OverrideDecodeError):
        decode_override(raw)


@pytest.mark.asyncio
async def test_bootstrap_creates_parent_and_record():
    store = InMemoryStore()
    gov = _gov(store)

    await gov.bootstrap()

    assert "/autothrottle" in store.data
    assert store.data[PATH] == b""
    cfg = await gov.get()
    assert not cfg.active


@pytest.mark.asyncio
async def test_bootstrap_tolerates_existing_parent():
    store = InMemoryStore()
    store.seed("/autothrottle")
    await _gov(store).bootstrap()
    assert PATH in store.data


@pytest.mark.asyncio
async def test_bootstrap_migrates_legacy_integer(caplog):
    store = InMemoryStore()
    store.seed(PATH, "150")
    gov = _gov(store)

    caplog.set_level("INFO", logger="autothrottle")
    await gov.bootstrap()

    assert loads(store.data[PATH]) == {"rate": 150, "autoremove": False}
    cfg = await gov.get()
    assert cfg.rate == 150 and cfg.auto_remove is False
    rec = next(r for r in caplog.records if getattr(r, "event", "") == "override.migrated")
    assert getattr(rec, "rate", None) == 150


@pytest.mark.asyncio
async def test_bootstrap_leaves_structured_record_untouched():
    store = InMemoryStore()
    store.seed(PATH, '{"rate":80,"autoremove":true}')

    await _gov(store).bootstrap()

    assert store.writes == []
    assert store.data[PATH] == b'{"rate":80,"autoremove":true}'


@pytest.mark.asyncio
async def test_bootstrap_store_failure_is_fatal():
    store = InMemoryStore()
    store.fail_ops.add("exists")
    with pytest.raises(OverrideBootstrapError):
        await _gov(store).bootstrap()


@pytest.mark.asyncio
async def test_bootstrap_migration_write_failure_is_fatal():
    store = InMemoryStore()
    store.seed(PATH, "150")
    store.fail_ops.add("set")
    with pytest.raises(OverrideBootstrapError):
        await _gov(store).bootstrap()


@pytest.mark.asyncio
async def test_set_get_remove():
    store = InMemoryStore()
    gov = _gov(store)
    await gov.bootstrap()

    await gov.set(ThrottleOverrideConfig(rate=200, auto_remove=True))
    cfg = await gov.get()
    assert cfg.rate == 200 and cfg.auto_remove is True

    await gov.remove()
    cfg = await gov.get()
    assert cfg.rate == 0 and cfg.auto_remove is False
    assert loads(store.data[PATH]) == {"rate": 0, "autoremove": False}


@pytest.mark.asyncio
async def test_get_of_garbage_record_raises_decode_error():
    store = InMemoryStore()
    store.seed(PATH, "not json")
    gov = _gov(store)
    await gov.bootstrap()
    with pytest.raises(OverrideDecodeError):
        await gov.get()


@pytest.mark.asyncio
async def test_store_failures_surface_as_override_store_errors():
    store = InMemoryStore()
    gov = _gov(store)
    await gov.bootstrap()

    store.fail_ops.update({"get", "set"})
    with pytest.raises(OverrideStoreError):
        await gov.get()
    with pytest.raises(OverrideStoreError, match="writing throttle override failed"):
        await gov.set(ThrottleOverrideConfig(rate=10))


@pytest.mark.asyncio
async def test_get_without_record_is_store_error():
    with pytest.raises(OverrideStoreError):
        await _gov(InMemoryStore()).get()
