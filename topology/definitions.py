"""Declarative definition of the order/invoice event topology.

The CDK stacks synthesize these definitions into SNS, SQS, EventBridge and
CloudWatch resources; ``topology.wiring`` builds the in-process engine from
the same values.
"""

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Tuple

from topology.access import LeadingKeysPolicy
from topology.alarm import Alarm, ComparisonOperator, TreatMissingData
from topology.events import (
    FAIL_NO_INVOICE_NUMBER,
    INVOICE_DETAIL_TYPE,
    INVOICE_SOURCE,
    ORDER_CREATED,
    ORDER_DELETED,
    ORDER_DETAIL_TYPE,
    ORDER_SOURCE,
    PRODUCT_NOT_FOUND,
    TIMEOUT,
)
from topology.metrics import Metric, Statistic

# Every consumer in the topology runs with the same invocation timeout
CONSUMER_TIMEOUT_SECONDS = 30

FilterPolicySpec = Mapping[str, Tuple[str, ...]]


@dataclass(frozen=True)
class TopicSpec:
    name: str
    display_name: str


@dataclass(frozen=True)
class QueueSpec:
    name: str
    max_receive_count: Optional[int] = None
    dead_letter_queue_name: Optional[str] = None
    visibility_timeout_seconds: int = CONSUMER_TIMEOUT_SECONDS


@dataclass(frozen=True)
class QueueSourceSpec:
    batch_size: int
    max_batching_window_seconds: int


@dataclass(frozen=True)
class StreamSourceSpec:
    batch_size: int
    retry_attempts: int
    bisect_batch_on_error: bool
    dead_letter_queue_name: str
    report_batch_item_failures: bool = True


@dataclass(frozen=True)
class RuleSpec:
    name: str
    description: str
    pattern: Mapping[str, Any]


@dataclass(frozen=True)
class ArchiveSpec:
    name: str
    pattern: Mapping[str, Any]
    retention_days: int

    @property
    def retention_seconds(self) -> int:
        return self.retention_days * 24 * 60 * 60


@dataclass(frozen=True)
class AlarmSpec:
    name: str
    description: str
    namespace: str
    metric_name: str
    statistic: Statistic
    period_minutes: int
    threshold: float
    evaluation_periods: int = 1
    comparison_operator: ComparisonOperator = (
        ComparisonOperator.GREATER_THAN_OR_EQUAL_TO_THRESHOLD
    )
    treat_missing_data: Optional[TreatMissingData] = None
    unit: Optional[str] = None

    @property
    def period_seconds(self) -> int:
        return self.period_minutes * 60

    def create_alarm(self, metric: Metric) -> Alarm:
        """Build an engine alarm reading ``metric`` with this period and statistic."""
        return Alarm(
            self.name,
            metric.with_(period=self.period_seconds, statistic=self.statistic),
            threshold=self.threshold,
            evaluation_periods=self.evaluation_periods,
            comparison_operator=self.comparison_operator,
            treat_missing_data=self.treat_missing_data or TreatMissingData.MISSING,
            description=self.description,
        )


# ----------------------------------------------------------------------
# Order events topic and its subscribers
# ----------------------------------------------------------------------

ORDER_EVENTS_TOPIC = TopicSpec(name="order-events", display_name="Order events topic")

# Topic message attribute carrying the order lifecycle event type
EVENT_TYPE_ATTRIBUTE = "eventType"

PAYMENTS_FILTER_POLICY: FilterPolicySpec = {EVENT_TYPE_ATTRIBUTE: (ORDER_CREATED,)}
ORDER_EMAILS_FILTER_POLICY: FilterPolicySpec = {
    EVENT_TYPE_ATTRIBUTE: (ORDER_CREATED, ORDER_DELETED),
}

ORDER_EVENTS_DLQ = QueueSpec(name="order-events-dlq")
ORDER_EVENTS_QUEUE = QueueSpec(
    name="order-events",
    max_receive_count=3,
    dead_letter_queue_name=ORDER_EVENTS_DLQ.name,
)
ORDER_EMAILS_SOURCE = QueueSourceSpec(batch_size=5, max_batching_window_seconds=10)

ORDER_ALARMS_TOPIC = TopicSpec(name="order-alarms", display_name="Order alarms topic")

# Log line written by the orders function when an order references a
# product that does not exist
PRODUCT_NOT_FOUND_LOG_PATTERN = "Some product was not found"

PRODUCT_NOT_FOUND_ALARM = AlarmSpec(
    name="OrderWithNonValidProduct",
    description="Some product was not found while creating a new order",
    namespace="ProductNotFound",
    metric_name="OrderWithNonValidProduct",
    statistic=Statistic.SUM,
    period_minutes=2,
    threshold=2,
)

WRITE_THROTTLE_EVENTS_ALARM = AlarmSpec(
    name="WriteThrottleEvents",
    description="Write throttled events alarm in orders DDB",
    namespace="AWS/DynamoDB",
    metric_name="WriteThrottleEvents",
    statistic=Statistic.SAMPLE_COUNT,
    period_minutes=2,
    threshold=25,
    treat_missing_data=TreatMissingData.NOT_BREACHING,
    unit="Count",
)

ORDER_EVENTS_DLQ_ALARM = AlarmSpec(
    name="OrderEventsDlqMessages",
    description="Order events that exhausted their redelivery budget",
    namespace="AWS/SQS",
    metric_name="ApproximateNumberOfMessagesVisible",
    statistic=Statistic.MAXIMUM,
    period_minutes=1,
    threshold=1,
)

# ----------------------------------------------------------------------
# Audit event bus
# ----------------------------------------------------------------------

AUDIT_BUS_NAME = "AuditEventBus"

AUDIT_ARCHIVE = ArchiveSpec(
    name="auditEvents",
    pattern={"source": [ORDER_SOURCE]},
    retention_days=10,
)

NON_VALID_ORDER_RULE = RuleSpec(
    name="NonValidOrderRule",
    description="Rule matching non valid order",
    pattern={
        "source": [ORDER_SOURCE],
        "detail-type": [ORDER_DETAIL_TYPE],
        "detail": {"reason": [PRODUCT_NOT_FOUND]},
    },
)

NON_VALID_INVOICE_RULE = RuleSpec(
    name="NonValidInvoiceRule",
    description="Rule matching non valid invoice",
    pattern={
        "source": [INVOICE_SOURCE],
        "detail-type": [INVOICE_DETAIL_TYPE],
        "detail": {"errorDetail": [FAIL_NO_INVOICE_NUMBER]},
    },
)

TIMEOUT_IMPORT_INVOICE_RULE = RuleSpec(
    name="TimeoutImportInvoiceRule",
    description="Rule matching timeout import invoice",
    pattern={
        "source": [INVOICE_SOURCE],
        "detail-type": [INVOICE_DETAIL_TYPE],
        "detail": {"errorDetail": [TIMEOUT]},
    },
)

INVOICE_IMPORT_TIMEOUT_QUEUE = QueueSpec(name="invoice-import-timeout")

AUDIT_ALARMS_TOPIC = TopicSpec(name="audit-alarms", display_name="Audit alarms topic")

INVOICE_IMPORT_TIMEOUT_ALARM = AlarmSpec(
    name="InvoiceImportTimeout",
    description="Number of invoice import timeout events in the queue",
    namespace="AWS/SQS",
    metric_name="ApproximateNumberOfMessagesVisible",
    statistic=Statistic.SUM,
    period_minutes=2,
    threshold=5,
)

AGE_OF_MESSAGES_ALARM = AlarmSpec(
    name="AgeOfMessagesInQueue",
    description="Maximum age of messages in invoice import timeout queue",
    namespace="AWS/SQS",
    metric_name="ApproximateAgeOfOldestMessage",
    statistic=Statistic.MAXIMUM,
    period_minutes=2,
    threshold=60,
    unit="Seconds",
)

# ----------------------------------------------------------------------
# Invoice stream processing
# ----------------------------------------------------------------------

INVOICE_EVENTS_SOURCE = StreamSourceSpec(
    batch_size=5,
    retry_attempts=3,
    bisect_batch_on_error=True,
    dead_letter_queue_name="invoice-events-dlq",
)

# ----------------------------------------------------------------------
# Product events (asynchronous invocation from the products function)
# ----------------------------------------------------------------------

PRODUCT_EVENTS_DLQ = QueueSpec(name="product-events-dlq")

# ----------------------------------------------------------------------
# Write scopes on shared tables (partition-key prefixes)
# ----------------------------------------------------------------------

ORDER_EVENTS_WRITE_SCOPE = LeadingKeysPolicy(("dynamodb:PutItem",), ("#order_*",))
PRODUCT_EVENTS_WRITE_SCOPE = LeadingKeysPolicy(("dynamodb:PutItem",), ("#product_*",))
INVOICE_EVENTS_WRITE_SCOPE = LeadingKeysPolicy(("dynamodb:PutItem",), ("#invoice_*",))
TRANSACTION_WRITE_SCOPE = LeadingKeysPolicy(("dynamodb:PutItem",), ("#transaction",))
TRANSACTION_READ_WRITE_SCOPE = LeadingKeysPolicy(
    ("dynamodb:UpdateItem", "dynamodb:GetItem"), ("#transaction",)
)
