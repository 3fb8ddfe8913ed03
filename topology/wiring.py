"""Compose the in-process topology from ``topology.definitions``.

Consumers are passed in as plain callables; nothing is looked up globally.
A single injectable clock drives queue visibility, archive retention and
metric sampling, so a test can step the whole topology through time.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from topology import definitions as d
from topology.alarm import Alarm, AlarmState, TopicAction
from topology.bus import Archive, EventBus
from topology.events import Event, TopicMessage
from topology.metrics import Metric, MetricFilter, MetricFilterHandler
from topology.queue import Queue, QueueConsumer, ReceivedMessage
from topology.stream import StreamBatchProcessor
from topology.topic import Topic

logger = logging.getLogger(__name__)


def _ignore(_: Any) -> None:
    return None


@dataclass
class Consumers:
    """The functions attached to the topology, keyed by role."""

    order_events: Callable[[TopicMessage], Any] = _ignore
    payments: Callable[[TopicMessage], Any] = _ignore
    order_emails: Callable[[List[ReceivedMessage]], Any] = _ignore
    orders_errors: Callable[[Event], Any] = _ignore
    invoice_errors: Callable[[Event], Any] = _ignore
    invoice_events: Callable[[Dict[str, Any]], Any] = _ignore
    order_alarm_subscribers: Sequence[Callable[[TopicMessage], Any]] = ()
    audit_alarm_subscribers: Sequence[Callable[[TopicMessage], Any]] = ()


@dataclass
class OrderTopology:
    order_events_topic: Topic
    order_events_queue: Queue
    order_events_dlq: Queue
    order_emails_consumer: QueueConsumer
    order_alarms_topic: Topic
    audit_bus: EventBus
    audit_archive: Archive
    invoice_import_timeout_queue: Queue
    audit_alarms_topic: Topic
    invoice_events_dlq: Queue
    invoice_events_processor: StreamBatchProcessor
    product_not_found_filter: MetricFilter
    write_throttle_events: Metric
    alarms: Dict[str, Alarm] = field(default_factory=dict)
    gauges: List[Metric] = field(default_factory=list)

    def metric_filter_handler(
        self, clock: Optional[Callable[[], float]] = None
    ) -> MetricFilterHandler:
        """A logging handler feeding the orders log through its metric filters."""
        return MetricFilterHandler([self.product_not_found_filter], clock=clock)

    def sample_gauges(self, timestamp: float) -> None:
        """Record one sample of every queue gauge at ``timestamp``."""
        for gauge in self.gauges:
            gauge.sample(timestamp)

    def evaluate_alarms(self, now: float) -> Dict[str, AlarmState]:
        return {name: alarm.evaluate(now) for name, alarm in self.alarms.items()}


def _queue(spec: d.QueueSpec, clock, dead_letter_queue: Optional[Queue] = None) -> Queue:
    return Queue(
        spec.name,
        visibility_timeout=spec.visibility_timeout_seconds,
        max_receive_count=spec.max_receive_count,
        dead_letter_queue=dead_letter_queue,
        clock=clock,
    )


def _alarm_topic(spec: d.TopicSpec, subscribers) -> Topic:
    topic = Topic(spec.name)
    for subscriber in subscribers:
        topic.subscribe(subscriber)
    return topic


def build_topology(
    consumers: Optional[Consumers] = None,
    clock: Callable[[], float] = time.monotonic,
) -> OrderTopology:
    """Build the order/invoice topology wired to ``consumers``.

    Args:
        consumers: Callables attached as topic subscribers, queue and stream
            handlers, rule targets and alarm subscribers.
        clock: Time source shared by queues, archives and metric filters.

    Returns:
        The composed topology. Queue consumers and alarms are driven by the
        caller (``poll``/``drain``, ``sample_gauges``/``evaluate_alarms``).
    """
    consumers = consumers or Consumers()

    # Order events fan-out
    order_events_dlq = _queue(d.ORDER_EVENTS_DLQ, clock)
    order_events_queue = _queue(d.ORDER_EVENTS_QUEUE, clock, order_events_dlq)

    order_events_topic = Topic(d.ORDER_EVENTS_TOPIC.name)
    order_events_topic.subscribe(consumers.order_events, name="order-events-function")
    order_events_topic.subscribe(
        consumers.payments,
        filter_policy=d.PAYMENTS_FILTER_POLICY,
        name="payments-function",
    )
    order_events_topic.subscribe_queue(
        order_events_queue, filter_policy=d.ORDER_EMAILS_FILTER_POLICY
    )

    order_emails_consumer = QueueConsumer(
        order_events_queue,
        consumers.order_emails,
        batch_size=d.ORDER_EMAILS_SOURCE.batch_size,
        max_batching_window=d.ORDER_EMAILS_SOURCE.max_batching_window_seconds,
        timeout=d.CONSUMER_TIMEOUT_SECONDS,
        clock=clock,
    )

    # Audit bus
    audit_bus = EventBus(d.AUDIT_BUS_NAME, clock=clock)
    audit_archive = audit_bus.archive(
        d.AUDIT_ARCHIVE.name,
        pattern=d.AUDIT_ARCHIVE.pattern,
        retention=d.AUDIT_ARCHIVE.retention_seconds,
    )

    invoice_import_timeout_queue = _queue(d.INVOICE_IMPORT_TIMEOUT_QUEUE, clock)

    for rule_spec, target in (
        (d.NON_VALID_ORDER_RULE, consumers.orders_errors),
        (d.NON_VALID_INVOICE_RULE, consumers.invoice_errors),
    ):
        rule = audit_bus.put_rule(rule_spec.name, rule_spec.pattern, rule_spec.description)
        rule.add_target(target)

    timeout_rule = audit_bus.put_rule(
        d.TIMEOUT_IMPORT_INVOICE_RULE.name,
        d.TIMEOUT_IMPORT_INVOICE_RULE.pattern,
        d.TIMEOUT_IMPORT_INVOICE_RULE.description,
    )
    timeout_rule.add_queue_target(invoice_import_timeout_queue)

    # Invoice stream
    invoice_events_dlq = Queue(d.INVOICE_EVENTS_SOURCE.dead_letter_queue_name, clock=clock)
    invoice_events_processor = StreamBatchProcessor(
        consumers.invoice_events,
        batch_size=d.INVOICE_EVENTS_SOURCE.batch_size,
        retry_attempts=d.INVOICE_EVENTS_SOURCE.retry_attempts,
        bisect_batch_on_error=d.INVOICE_EVENTS_SOURCE.bisect_batch_on_error,
        report_batch_item_failures=d.INVOICE_EVENTS_SOURCE.report_batch_item_failures,
        on_failure=invoice_events_dlq.send,
        timeout=d.CONSUMER_TIMEOUT_SECONDS,
        clock=clock,
    )

    # Metrics and alarms
    order_alarms_topic = _alarm_topic(d.ORDER_ALARMS_TOPIC, consumers.order_alarm_subscribers)
    audit_alarms_topic = _alarm_topic(d.AUDIT_ALARMS_TOPIC, consumers.audit_alarm_subscribers)

    product_not_found_filter = MetricFilter(
        d.PRODUCT_NOT_FOUND_LOG_PATTERN,
        Metric(
            d.PRODUCT_NOT_FOUND_ALARM.namespace,
            d.PRODUCT_NOT_FOUND_ALARM.metric_name,
        ),
    )
    write_throttle_events = Metric(
        d.WRITE_THROTTLE_EVENTS_ALARM.namespace,
        d.WRITE_THROTTLE_EVENTS_ALARM.metric_name,
    )

    timeout_depth = invoice_import_timeout_queue.metric_approximate_number_of_messages_visible()
    timeout_age = invoice_import_timeout_queue.metric_approximate_age_of_oldest_message()
    dlq_depth = order_events_dlq.metric_approximate_number_of_messages_visible()

    alarms: Dict[str, Alarm] = {}
    for spec, metric, topic in (
        (d.INVOICE_IMPORT_TIMEOUT_ALARM, timeout_depth, audit_alarms_topic),
        (d.AGE_OF_MESSAGES_ALARM, timeout_age, audit_alarms_topic),
        (d.PRODUCT_NOT_FOUND_ALARM, product_not_found_filter.metric, order_alarms_topic),
        (d.WRITE_THROTTLE_EVENTS_ALARM, write_throttle_events, order_alarms_topic),
        (d.ORDER_EVENTS_DLQ_ALARM, dlq_depth, order_alarms_topic),
    ):
        alarm = spec.create_alarm(metric)
        alarm.add_alarm_action(TopicAction(topic))
        alarms[spec.name] = alarm

    logger.debug("Built topology with alarms %s", sorted(alarms))

    return OrderTopology(
        order_events_topic=order_events_topic,
        order_events_queue=order_events_queue,
        order_events_dlq=order_events_dlq,
        order_emails_consumer=order_emails_consumer,
        order_alarms_topic=order_alarms_topic,
        audit_bus=audit_bus,
        audit_archive=audit_archive,
        invoice_import_timeout_queue=invoice_import_timeout_queue,
        audit_alarms_topic=audit_alarms_topic,
        invoice_events_dlq=invoice_events_dlq,
        invoice_events_processor=invoice_events_processor,
        product_not_found_filter=product_not_found_filter,
        write_throttle_events=write_throttle_events,
        alarms=alarms,
        gauges=[timeout_depth, timeout_age, dlq_depth],
    )
