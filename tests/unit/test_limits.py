import pytest

from autothrottle.errors import BrokerMissingError, InvalidRoleError, LimitsConfigError, UnknownInstanceTypeError
from autothrottle.throttle.limits import Limits
from autothrottle.throttle.models import BrokerMetrics, ReplicaRole

pytestmark = [pytest.mark.unit]


def _limits(**kw) -> Limits:
    args = {
        "minimum": 10.0,
        "maximum": 90.0,
        "source_maximum": 80.0,
        "destination_maximum": 50.0,
        "capacities": {"mock": 200.0},
    }
    args.update(kw)
    return Limits(**args)


def _broker(tx: float = 0.0, rx: float = 0.0, instance_type: str = "mock") -> BrokerMetrics:
    return BrokerMetrics(broker_id=1001, instance_type=instance_type, net_tx=tx, net_rx=rx)


@pytest.mark.parametrize("minimum", [0, -1, -0.5])
def test_minimum_must_be_positive(minimum):
    with pytest.raises(LimitsConfigError):
        _limits(minimum=minimum)


@pytest.mark.parametrize("field", ["maximum", "source_maximum", "destination_maximum"])
@pytest.mark.parametrize("value", [0, -1, 100.0001, 101])
def test_portions_out_of_range_rejected(field, value):
    with pytest.raises(LimitsConfigError):
        _limits(**{field: value})


@pytest.mark.parametrize("field", ["maximum", "source_maximum", "destination_maximum"])
def test_portion_of_exactly_100_accepted(field):
    lim = _limits(**{field: 100})
    assert getattr(lim, field) == 100


def test_capacities_are_copied():
    caps = {"mock": 200.0}
    lim = _limits(capacities=caps)
    caps["mock"] = 1.0
    assert lim.capacity(_broker()) == 200.0


def test_headroom_subtracts_non_replication_traffic():
    # (200 - (150 - 100) - 0) * 0.9
    assert _limits().headroom(_broker(tx=150.0), 100.0) == pytest.approx(135.0)


def test_headroom_over_capacity_floors_at_minimum():
    # (200 - 250 - 50) * 0.9 is negative
    assert _limits().headroom(_broker(tx=250.0), 0.0) == 10.0


def test_headroom_missing_broker_reports_minimum_fallback():
    with pytest.raises(BrokerMissingError) as ei:
        _limits().headroom(None, 0.0)
    assert ei.value.fallback == 10.0


def test_unknown_instance_type_reports_minimum_fallback():
    with pytest.raises(UnknownInstanceTypeError) as ei:
        _limits().replication_headroom(_broker(instance_type="x1.32xlarge"), ReplicaRole.source, 0.0)
    assert ei.value.fallback == 10.0
    assert "x1.32xlarge" in str(ei.value)


def test_source_uses_outbound_and_source_portion():
    # non-throttle = 100 - 50 = 50; (200 - 50) * 0.8
    rate = _limits().replication_headroom(_broker(tx=100.0, rx=20.0), ReplicaRole.source, 50.0)
    assert rate == pytest.approx(120.0)


def test_destination_uses_destination_portion_and_outbound_non_throttle():
    # non-throttle still from tx: 100 - 50 = 50; rx below capacity; (200 - 50) * 0.5
    rate = _limits().replication_headroom(_broker(tx=100.0, rx=20.0), ReplicaRole.destination, 50.0)
    assert rate == pytest.approx(75.0)


def test_destination_over_capacity_measured_on_inbound():
    # non-throttle = max(100 - 100, 0) = 0; over cap = 260 - 200 = 60; (200 - 60) * 0.5
    rate = _limits().replication_headroom(_broker(tx=100.0, rx=260.0), ReplicaRole.destination, 100.0)
    assert rate == pytest.approx(70.0)


def test_role_accepts_string_values():
    lim = _limits()
    b = _broker(tx=100.0, rx=20.0)
    assert lim.replication_headroom(b, "source", 50.0) == lim.replication_headroom(b, ReplicaRole.source, 50.0)


@pytest.mark.parametrize("role", ["leader", "", None])
def test_invalid_role_falls_back_to_zero(role):
    with pytest.raises(InvalidRoleError) as ei:
        _limits().replication_headroom(_broker(), role, 0.0)
    assert ei.value.fallback == 0.0


def test_invalid_role_checked_before_broker():
    with pytest.raises(InvalidRoleError):
        _limits().replication_headroom(None, "leader", 0.0)


def test_never_below_minimum_across_utilizations():
    lim = _limits()
    for role in ReplicaRole:
        for tx in range(0, 400, 25):
            for prev in range(0, 300, 30):
                b = _broker(tx=float(tx), rx=float(tx))
                assert lim.replication_headroom(b, role, float(prev)) >= lim.minimum


def test_more_utilization_never_raises_the_rate():
    lim = _limits()
    for role in ReplicaRole:
        last = None
        for tx in range(0, 400, 10):
            rate = lim.replication_headroom(_broker(tx=float(tx), rx=float(tx)), role, 40.0)
            if last is not None:
                assert rate <= last
            last = rate
