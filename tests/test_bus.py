"""Unit tests for the audit event bus: rules, targets and archives."""

import json

import pytest

from topology.bus import EventBus
from topology.errors import DuplicateNameError, PatternError
from topology.events import Event
from topology.queue import Queue

NON_VALID_ORDER = {
    "source": ["app.order"],
    "detail-type": ["order"],
    "detail": {"reason": ["PRODUCT_NOT_FOUND"]},
}


@pytest.fixture
def bus(clock):
    return EventBus("AuditEventBus", clock=clock)


def _order_event(reason):
    return Event(source="app.order", detail_type="order", detail={"reason": reason})


def test_matching_event_is_delivered_once_per_target(bus):
    """Test each target of a matching rule receives the event exactly once."""
    # Arrange
    first, second = [], []
    rule = bus.put_rule("nonValidOrderRule", NON_VALID_ORDER)
    rule.add_target(first.append)
    rule.add_target(second.append)
    event = _order_event("PRODUCT_NOT_FOUND")

    # Act
    result = bus.publish(event)

    # Assert
    assert first == [event]
    assert second == [event]
    assert result.matched_rules == ["nonValidOrderRule"]
    assert result.delivered == [("nonValidOrderRule", "Target0"), ("nonValidOrderRule", "Target1")]


def test_unmatched_event_reaches_no_target(bus):
    received = []
    bus.put_rule("nonValidOrderRule", NON_VALID_ORDER).add_target(received.append)

    result = bus.publish(_order_event("OTHER"))

    assert received == []
    assert result.matched_rules == []


def test_event_matching_two_rules_goes_to_both(bus):
    orders, everything = [], []
    bus.put_rule("nonValidOrderRule", NON_VALID_ORDER).add_target(orders.append)
    bus.put_rule("allOrders", {"source": ["app.order"]}).add_target(everything.append)

    bus.publish(_order_event("PRODUCT_NOT_FOUND"))

    assert len(orders) == 1
    assert len(everything) == 1


def test_archive_records_independently_of_rules(bus):
    """Test archived events need not match any rule."""
    archive = bus.archive("auditEvents", pattern={"source": ["app.order"]})

    result = bus.publish(_order_event("OTHER"))
    bus.publish(Event(source="app.invoice", detail_type="invoice"))

    assert result.archived == ["auditEvents"]
    assert result.matched_rules == []
    assert [e.detail["reason"] for e in archive.events()] == ["OTHER"]


def test_archive_drops_events_past_retention(bus, clock):
    archive = bus.archive("auditEvents", retention=10 * 24 * 3600)
    bus.publish(_order_event("OTHER"))

    clock.advance(9 * 24 * 3600)
    assert len(archive.events()) == 1
    clock.advance(2 * 24 * 3600)
    assert archive.events() == []


def test_failed_target_goes_to_its_dead_letter_queue(bus, clock):
    """Test a raising target is recorded and does not block other targets."""
    dlq = Queue("rule-dlq", clock=clock)
    delivered = []

    def explode(event):
        raise RuntimeError("boom")

    rule = bus.put_rule("nonValidOrderRule", NON_VALID_ORDER)
    rule.add_target(explode, target_id="broken", dead_letter_queue=dlq)
    rule.add_target(delivered.append, target_id="healthy")

    result = bus.publish(_order_event("PRODUCT_NOT_FOUND"))

    assert len(delivered) == 1
    assert ("nonValidOrderRule", "broken") in result.failed
    (body,) = dlq.bodies()
    assert body["rule"] == "nonValidOrderRule"
    assert body["target"] == "broken"


def test_queue_target(bus, clock):
    queue = Queue("invoice-import-timeout", clock=clock)
    bus.put_rule("timeoutImportInvoiceRule", {"detail": {"errorDetail": ["TIMEOUT"]}}).add_queue_target(queue)

    bus.publish(Event(source="app.invoice", detail_type="invoice", detail={"errorDetail": "TIMEOUT"}))

    (event,) = queue.bodies()
    assert event.detail["errorDetail"] == "TIMEOUT"


def test_disabled_rule_does_not_match(bus):
    received = []
    rule = bus.put_rule("nonValidOrderRule", NON_VALID_ORDER)
    rule.add_target(received.append)
    rule.enabled = False

    bus.publish(_order_event("PRODUCT_NOT_FOUND"))

    assert received == []


def test_duplicate_rule_raises(bus):
    bus.put_rule("nonValidOrderRule", NON_VALID_ORDER)

    with pytest.raises(DuplicateNameError):
        bus.put_rule("nonValidOrderRule", NON_VALID_ORDER)


def test_malformed_rule_pattern_raises(bus):
    with pytest.raises(PatternError):
        bus.put_rule("broken", {"source": "app.order"})


def test_put_events_parses_request_entries(bus):
    received = []
    bus.put_rule("nonValidOrderRule", NON_VALID_ORDER).add_target(received.append)
    entry = _order_event("PRODUCT_NOT_FOUND").to_entry("AuditEventBus")

    (result,) = bus.put_events([entry])

    assert json.loads(entry["Detail"]) == {"reason": "PRODUCT_NOT_FOUND"}
    assert result.matched_rules == ["nonValidOrderRule"]
    assert received[0].source == "app.order"


@pytest.mark.parametrize(
    "entry",
    [
        {"DetailType": "order", "Detail": "{}"},
        {"Source": "app.order", "DetailType": "order", "Detail": "[]"},
    ],
)
def test_invalid_entry_raises(bus, entry):
    with pytest.raises(ValueError):
        bus.put_events([entry])


def test_invalid_entry_rejects_whole_request(bus):
    """Test a malformed entry stops valid entries in the same request from publishing."""
    # Arrange
    received = []
    bus.put_rule("nonValidOrderRule", NON_VALID_ORDER).add_target(received.append)
    archive = bus.archive("auditEvents")
    good = _order_event("PRODUCT_NOT_FOUND").to_entry("AuditEventBus")
    bad = {"DetailType": "order", "Detail": "{}"}

    # Act
    with pytest.raises(ValueError):
        bus.put_events([good, bad])

    # Assert
    assert received == []
    assert archive.events() == []


def test_event_detail_is_immutable():
    event = _order_event("PRODUCT_NOT_FOUND")

    with pytest.raises(TypeError):
        event.detail["reason"] = "OTHER"
