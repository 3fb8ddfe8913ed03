"""CDK stack for the audit event bus and its remediation targets."""

import aws_cdk as cdk
from constructs import Construct
from aws_cdk import (
    aws_cloudwatch_actions as cw_actions,
    aws_events as events,
    aws_events_targets as targets,
    aws_sns as sns,
    aws_sns_subscriptions as subscriptions,
    aws_sqs as sqs,
    Duration,
    CfnOutput,
)

from stacks.common import (
    create_alarm,
    event_pattern,
    metric_options,
    name_suffix,
    python_function,
)
from topology.definitions import (
    AGE_OF_MESSAGES_ALARM,
    AUDIT_ALARMS_TOPIC,
    AUDIT_ARCHIVE,
    AUDIT_BUS_NAME,
    INVOICE_IMPORT_TIMEOUT_ALARM,
    INVOICE_IMPORT_TIMEOUT_QUEUE,
    NON_VALID_INVOICE_RULE,
    NON_VALID_ORDER_RULE,
    TIMEOUT_IMPORT_INVOICE_RULE,
)


class AuditEventBusStack(cdk.Stack):
    """Event bus routing order and invoice failures to remediation targets."""

    def __init__(self, scope: Construct, construct_id: str, **kwargs) -> None:
        """Initialise the audit event bus stack.

        Args:
            scope: The scope in which this stack is defined.
            construct_id: The scoped construct ID.
            **kwargs: Additional stack properties.
        """
        super().__init__(scope, construct_id, **kwargs)

        suffix = name_suffix(self)

        self.bus = events.EventBus(
            self,
            "AuditEventBus",
            event_bus_name=f"{AUDIT_BUS_NAME}{suffix}",
        )

        self.bus.archive(
            "BusArchive",
            archive_name=f"{AUDIT_ARCHIVE.name}{suffix}",
            event_pattern=event_pattern(AUDIT_ARCHIVE.pattern),
            retention=Duration.days(AUDIT_ARCHIVE.retention_days),
        )

        # Invalid orders: app.order / order / reason=PRODUCT_NOT_FOUND
        non_valid_order_rule = self._rule("NonValidOrderRule", NON_VALID_ORDER_RULE)
        self.orders_errors_function = python_function(
            self,
            "OrdersErrorsFunction",
            "orders-errors",
            "audit_errors.orders_errors_handler",
        )
        non_valid_order_rule.add_target(targets.LambdaFunction(self.orders_errors_function))

        # Invalid invoices: app.invoice / invoice / errorDetail=FAIL_NO_INVOICE_NUMBER
        non_valid_invoice_rule = self._rule("NonValidInvoiceRule", NON_VALID_INVOICE_RULE)
        self.invoice_errors_function = python_function(
            self,
            "InvoiceErrorsFunction",
            "invoice-errors",
            "audit_errors.invoice_errors_handler",
        )
        non_valid_invoice_rule.add_target(
            targets.LambdaFunction(self.invoice_errors_function)
        )

        # Import timeouts: app.invoice / invoice / errorDetail=TIMEOUT
        timeout_import_invoice_rule = self._rule(
            "TimeoutImportInvoiceRule", TIMEOUT_IMPORT_INVOICE_RULE
        )
        self.invoice_import_timeout_queue = sqs.Queue(
            self,
            "InvoiceImportTimeout",
            queue_name=f"{INVOICE_IMPORT_TIMEOUT_QUEUE.name}{suffix}",
        )
        timeout_import_invoice_rule.add_target(
            targets.SqsQueue(self.invoice_import_timeout_queue)
        )

        # Alarms on the timeout queue
        self.alarms_topic = sns.Topic(
            self,
            "AuditAlarmsTopic",
            topic_name=f"{AUDIT_ALARMS_TOPIC.name}{suffix}",
            display_name=AUDIT_ALARMS_TOPIC.display_name,
        )
        alarm_email = self.node.try_get_context("alarm_email")
        if alarm_email:
            self.alarms_topic.add_subscription(subscriptions.EmailSubscription(alarm_email))

        queue = self.invoice_import_timeout_queue
        for alarm_id, spec, metric in (
            (
                "InvoiceImportTimeoutAlarm",
                INVOICE_IMPORT_TIMEOUT_ALARM,
                queue.metric_approximate_number_of_messages_visible(
                    **metric_options(INVOICE_IMPORT_TIMEOUT_ALARM)
                ),
            ),
            (
                "AgeOfMessagesInQueue",
                AGE_OF_MESSAGES_ALARM,
                queue.metric_approximate_age_of_oldest_message(
                    **metric_options(AGE_OF_MESSAGES_ALARM)
                ),
            ),
        ):
            alarm = create_alarm(self, alarm_id, spec, metric)
            alarm.add_alarm_action(cw_actions.SnsAction(self.alarms_topic))

        # Stack outputs
        CfnOutput(
            self,
            "AuditEventBusName",
            value=self.bus.event_bus_name,
            description="Name of the audit event bus",
        )

        CfnOutput(
            self,
            "InvoiceImportTimeoutQueueUrl",
            value=self.invoice_import_timeout_queue.queue_url,
            description="URL of the invoice import timeout queue",
        )

    def _rule(self, construct_id: str, spec) -> events.Rule:
        return events.Rule(
            self,
            construct_id,
            rule_name=f"{spec.name}{name_suffix(self)}",
            description=spec.description,
            event_bus=self.bus,
            event_pattern=event_pattern(spec.pattern),
        )
