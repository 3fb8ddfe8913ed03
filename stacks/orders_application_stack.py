"""CDK stack for the orders application: table, topic fan-out and consumers."""

import aws_cdk as cdk
from constructs import Construct
from aws_cdk import (
    aws_cloudwatch_actions as cw_actions,
    aws_dynamodb as dynamodb,
    aws_events as events,
    aws_iam as iam,
    aws_lambda_event_sources as lambda_event_sources,
    aws_logs as logs,
    aws_sns as sns,
    aws_sns_subscriptions as subscriptions,
    aws_sqs as sqs,
    Duration,
    RemovalPolicy,
    CfnOutput,
)

from stacks.common import (
    DLQ_RETENTION_DAYS,
    create_alarm,
    leading_keys_statement,
    metric_options,
    name_suffix,
    python_function,
    subscription_filter_policy,
)
from stacks.events_table_stack import EMAIL_INDEX_NAME
from topology.definitions import (
    ORDER_ALARMS_TOPIC,
    ORDER_EMAILS_FILTER_POLICY,
    ORDER_EMAILS_SOURCE,
    ORDER_EVENTS_DLQ,
    ORDER_EVENTS_DLQ_ALARM,
    ORDER_EVENTS_QUEUE,
    ORDER_EVENTS_TOPIC,
    ORDER_EVENTS_WRITE_SCOPE,
    PAYMENTS_FILTER_POLICY,
    PRODUCT_NOT_FOUND_ALARM,
    PRODUCT_NOT_FOUND_LOG_PATTERN,
    WRITE_THROTTLE_EVENTS_ALARM,
)

# Orders table capacity
ORDERS_READ_CAPACITY = 1
ORDERS_WRITE_CAPACITY = 1
ORDERS_MAX_WRITE_CAPACITY = 4
ORDERS_WRITE_TARGET_UTILIZATION_PERCENT = 30
ORDERS_SCALING_COOLDOWN_SECONDS = 60

DEFAULT_SENDER_EMAIL = "no-reply@example.com"


class OrdersApplicationStack(cdk.Stack):
    """Orders table, order events topic and the functions consuming it."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        products_table: dynamodb.ITable,
        events_table: dynamodb.ITable,
        audit_bus: events.IEventBus,
        **kwargs,
    ) -> None:
        """Initialise the orders application stack.

        Args:
            scope: The scope in which this stack is defined.
            construct_id: The scoped construct ID.
            products_table: Product catalogue table read when creating orders.
            events_table: Shared events table written by the order events function.
            audit_bus: Bus receiving invalid order events.
            **kwargs: Additional stack properties.
        """
        super().__init__(scope, construct_id, **kwargs)

        suffix = name_suffix(self)

        # Orders table with autoscaled write capacity
        self.orders_table = dynamodb.Table(
            self,
            "OrdersTable",
            table_name=f"orders{suffix}",
            partition_key=dynamodb.Attribute(
                name="pk",
                type=dynamodb.AttributeType.STRING,
            ),
            sort_key=dynamodb.Attribute(
                name="sk",
                type=dynamodb.AttributeType.STRING,
            ),
            billing_mode=dynamodb.BillingMode.PROVISIONED,
            read_capacity=ORDERS_READ_CAPACITY,
            write_capacity=ORDERS_WRITE_CAPACITY,
            removal_policy=RemovalPolicy.DESTROY,
        )

        write_scaling = self.orders_table.auto_scale_write_capacity(
            min_capacity=ORDERS_WRITE_CAPACITY,
            max_capacity=ORDERS_MAX_WRITE_CAPACITY,
        )
        write_scaling.scale_on_utilization(
            target_utilization_percent=ORDERS_WRITE_TARGET_UTILIZATION_PERCENT,
            scale_in_cooldown=Duration.seconds(ORDERS_SCALING_COOLDOWN_SECONDS),
            scale_out_cooldown=Duration.seconds(ORDERS_SCALING_COOLDOWN_SECONDS),
        )

        # Alarm notifications
        self.alarms_topic = sns.Topic(
            self,
            "OrderAlarmsTopic",
            topic_name=f"{ORDER_ALARMS_TOPIC.name}{suffix}",
            display_name=ORDER_ALARMS_TOPIC.display_name,
        )
        alarm_email = self.node.try_get_context("alarm_email")
        if alarm_email:
            self.alarms_topic.add_subscription(subscriptions.EmailSubscription(alarm_email))
        alarm_action = cw_actions.SnsAction(self.alarms_topic)

        write_throttle_alarm = create_alarm(
            self,
            "WriteThrottleEventsAlarm",
            WRITE_THROTTLE_EVENTS_ALARM,
            self.orders_table.metric(
                WRITE_THROTTLE_EVENTS_ALARM.metric_name,
                **metric_options(WRITE_THROTTLE_EVENTS_ALARM),
            ),
        )
        write_throttle_alarm.add_alarm_action(alarm_action)

        # Order events topic
        self.order_events_topic = sns.Topic(
            self,
            "OrderEventsTopic",
            topic_name=f"{ORDER_EVENTS_TOPIC.name}{suffix}",
            display_name=ORDER_EVENTS_TOPIC.display_name,
        )

        # Orders function (behind the REST API)
        self.orders_function = python_function(
            self,
            "OrdersFunction",
            "orders",
            "orders.handler",
            environment={
                "PRODUCTS_DDB": products_table.table_name,
                "ORDERS_DDB": self.orders_table.table_name,
                "ORDER_EVENTS_TOPIC_ARN": self.order_events_topic.topic_arn,
                "AUDIT_BUS_NAME": audit_bus.event_bus_name,
            },
        )
        products_table.grant_read_data(self.orders_function)
        self.orders_table.grant_read_write_data(self.orders_function)
        self.order_events_topic.grant_publish(self.orders_function)
        audit_bus.grant_put_events_to(self.orders_function)

        # Orders logging an unknown product feed the product-not-found alarm
        product_not_found_filter = self.orders_function.log_group.add_metric_filter(
            "ProductNotFoundMetric",
            filter_pattern=logs.FilterPattern.literal(PRODUCT_NOT_FOUND_LOG_PATTERN),
            metric_name=PRODUCT_NOT_FOUND_ALARM.metric_name,
            metric_namespace=PRODUCT_NOT_FOUND_ALARM.namespace,
            metric_value="1",
        )
        product_not_found_alarm = create_alarm(
            self,
            "ProductNotFoundAlarm",
            PRODUCT_NOT_FOUND_ALARM,
            product_not_found_filter.metric(**metric_options(PRODUCT_NOT_FOUND_ALARM)),
        )
        product_not_found_alarm.add_alarm_action(alarm_action)

        # Order events function: every order event, stored under #order_*
        self.order_events_function = python_function(
            self,
            "OrderEventsFunction",
            "order-events",
            "order_events.handler",
            environment={"EVENTS_DDB": events_table.table_name},
        )
        self.order_events_function.add_to_role_policy(
            leading_keys_statement(ORDER_EVENTS_WRITE_SCOPE, events_table)
        )
        self.order_events_topic.add_subscription(
            subscriptions.LambdaSubscription(self.order_events_function)
        )

        # Payments function: created orders only
        self.payments_function = python_function(
            self,
            "PaymentsFunction",
            "payments",
            "payments.handler",
        )
        self.order_events_topic.add_subscription(
            subscriptions.LambdaSubscription(
                self.payments_function,
                filter_policy=subscription_filter_policy(PAYMENTS_FILTER_POLICY),
            )
        )

        # Order events queue with its dead-letter queue
        self.order_events_dlq = sqs.Queue(
            self,
            "OrderEventsDlq",
            queue_name=f"{ORDER_EVENTS_DLQ.name}{suffix}",
            retention_period=Duration.days(DLQ_RETENTION_DAYS),
        )

        self.order_events_queue = sqs.Queue(
            self,
            "OrderEventsQueue",
            queue_name=f"{ORDER_EVENTS_QUEUE.name}{suffix}",
            visibility_timeout=Duration.seconds(ORDER_EVENTS_QUEUE.visibility_timeout_seconds),
            dead_letter_queue=sqs.DeadLetterQueue(
                max_receive_count=ORDER_EVENTS_QUEUE.max_receive_count,
                queue=self.order_events_dlq,
            ),
        )
        self.order_events_topic.add_subscription(
            subscriptions.SqsSubscription(
                self.order_events_queue,
                filter_policy=subscription_filter_policy(ORDER_EMAILS_FILTER_POLICY),
            )
        )

        dlq_alarm = create_alarm(
            self,
            "OrderEventsDlqAlarm",
            ORDER_EVENTS_DLQ_ALARM,
            self.order_events_dlq.metric_approximate_number_of_messages_visible(
                **metric_options(ORDER_EVENTS_DLQ_ALARM)
            ),
        )
        dlq_alarm.add_alarm_action(alarm_action)

        # Order emails function consuming the queue
        self.order_emails_function = python_function(
            self,
            "OrderEmailsFunction",
            "order-emails",
            "order_emails.handler",
            environment={
                "SENDER_EMAIL": self.node.try_get_context("sender_email")
                or DEFAULT_SENDER_EMAIL,
            },
        )
        self.order_emails_function.add_event_source(
            lambda_event_sources.SqsEventSource(
                self.order_events_queue,
                batch_size=ORDER_EMAILS_SOURCE.batch_size,
                enabled=True,
                max_batching_window=Duration.seconds(
                    ORDER_EMAILS_SOURCE.max_batching_window_seconds
                ),
                report_batch_item_failures=True,
            )
        )
        self.order_events_queue.grant_consume_messages(self.order_emails_function)
        self.order_emails_function.add_to_role_policy(
            iam.PolicyStatement(
                effect=iam.Effect.ALLOW,
                actions=["ses:SendEmail", "ses:SendRawEmail"],
                resources=["*"],
            )
        )

        # Order events fetch function (behind the REST API)
        self.order_events_fetch_function = python_function(
            self,
            "OrderEventsFetchFunction",
            "order-events-fetch",
            "order_events_fetch.handler",
            environment={"EVENTS_DDB": events_table.table_name},
        )
        self.order_events_fetch_function.add_to_role_policy(
            iam.PolicyStatement(
                effect=iam.Effect.ALLOW,
                actions=["dynamodb:Query"],
                resources=[f"{events_table.table_arn}/index/{EMAIL_INDEX_NAME}"],
            )
        )

        # Stack outputs
        CfnOutput(
            self,
            "OrdersTableName",
            value=self.orders_table.table_name,
            description="Name of the orders DynamoDB table",
        )

        CfnOutput(
            self,
            "OrderEventsTopicArn",
            value=self.order_events_topic.topic_arn,
            description="ARN of the order events SNS topic",
        )

        CfnOutput(
            self,
            "OrderEventsQueueUrl",
            value=self.order_events_queue.queue_url,
            description="URL of the order events queue",
        )

        CfnOutput(
            self,
            "OrderEventsDlqUrl",
            value=self.order_events_dlq.queue_url,
            description="URL of the order events DLQ",
        )
