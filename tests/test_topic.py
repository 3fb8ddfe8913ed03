"""Unit tests for topic fan-out and subscription filter policies."""

import pytest

from topology.errors import DuplicateNameError, PatternError
from topology.queue import Queue
from topology.topic import FilterPolicy, Topic


@pytest.fixture
def topic():
    return Topic("order-events")


def test_filtered_and_unfiltered_subscriptions(topic):
    """Test a filtered subscription gets only its event type; an unfiltered one gets all."""
    # Arrange
    payments, order_events = [], []
    topic.subscribe(payments.append, filter_policy={"eventType": ["ORDER_CREATED"]})
    topic.subscribe(order_events.append)

    # Act
    topic.publish({"orderId": "1"}, attributes={"eventType": "ORDER_CREATED"})
    topic.publish({"orderId": "2"}, attributes={"eventType": "ORDER_DELETED"})

    # Assert
    assert [m.body["orderId"] for m in payments] == ["1"]
    assert [m.body["orderId"] for m in order_events] == ["1", "2"]


def test_message_without_filtered_attribute_is_not_delivered(topic):
    received = []
    topic.subscribe(received.append, filter_policy={"eventType": ["ORDER_CREATED"]})

    result = topic.publish({"orderId": "1"})

    assert received == []
    assert result.matched == []


def test_each_subscriber_gets_its_own_copy(topic):
    """Test a subscriber mutating its message does not affect others."""

    def mutate(message):
        message.body["orderId"] = "changed"

    received = []
    topic.subscribe(mutate, name="a-mutator")
    topic.subscribe(received.append, name="b-reader")
    body = {"orderId": "1"}

    topic.publish(body)

    assert received[0].body == {"orderId": "1"}
    assert body == {"orderId": "1"}


def test_failing_subscriber_does_not_block_others(topic):
    """Test delivery failures are recorded, not raised."""

    def explode(message):
        raise RuntimeError("boom")

    received = []
    topic.subscribe(explode, name="broken")
    topic.subscribe(received.append, name="healthy")

    result = topic.publish({"orderId": "1"})

    assert len(received) == 1
    assert result.delivered == ["healthy"]
    assert isinstance(result.failed["broken"], RuntimeError)


def test_subscribe_queue_enqueues_matching_messages(topic, clock):
    queue = Queue("order-events", clock=clock)
    topic.subscribe_queue(queue, filter_policy={"eventType": ["ORDER_CREATED", "ORDER_DELETED"]})

    topic.publish({"orderId": "1"}, attributes={"eventType": "ORDER_CREATED"})
    topic.publish({"orderId": "2"}, attributes={"eventType": "ORDER_UPDATED"})

    (received,) = queue.receive(10)
    assert received.body.body == {"orderId": "1"}
    assert received.body.attributes["eventType"] == "ORDER_CREATED"


def test_duplicate_subscription_name_raises(topic):
    topic.subscribe(print, name="payments")

    with pytest.raises(DuplicateNameError):
        topic.subscribe(print, name="payments")


def test_unsubscribe_stops_delivery(topic):
    received = []
    topic.subscribe(received.append, name="payments")
    topic.unsubscribe("payments")

    topic.publish({"orderId": "1"})

    assert received == []
    assert topic.subscriptions == []


@pytest.mark.parametrize("allowlists", [{}, {"eventType": "ORDER_CREATED"}])
def test_malformed_filter_policy_raises(allowlists):
    with pytest.raises(PatternError):
        FilterPolicy(allowlists)


def test_filter_policy_requires_every_attribute():
    policy = FilterPolicy({"eventType": ["ORDER_CREATED"], "channel": ["web"]})

    assert policy.matches({"eventType": "ORDER_CREATED", "channel": "web"})
    assert not policy.matches({"eventType": "ORDER_CREATED"})
    assert policy.allowlists == {"eventType": ["ORDER_CREATED"], "channel": ["web"]}
