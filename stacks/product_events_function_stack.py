"""CDK stack for the product events function and its dead-letter queue."""

import aws_cdk as cdk
from constructs import Construct
from aws_cdk import (
    aws_dynamodb as dynamodb,
    aws_sqs as sqs,
    Duration,
    CfnOutput,
)

from stacks.common import (
    DLQ_RETENTION_DAYS,
    leading_keys_statement,
    name_suffix,
    python_function,
)
from topology.definitions import PRODUCT_EVENTS_DLQ, PRODUCT_EVENTS_WRITE_SCOPE


class ProductEventsFunctionStack(cdk.Stack):
    """Records product changes in the events table under ``#product_*`` keys."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        events_table: dynamodb.ITable,
        **kwargs,
    ) -> None:
        """Initialise the product events stack.

        Args:
            scope: The scope in which this stack is defined.
            construct_id: The scoped construct ID.
            events_table: Shared events table.
            **kwargs: Additional stack properties.
        """
        super().__init__(scope, construct_id, **kwargs)

        self.dlq = sqs.Queue(
            self,
            "ProductEventsDlq",
            queue_name=f"{PRODUCT_EVENTS_DLQ.name}{name_suffix(self)}",
            retention_period=Duration.days(DLQ_RETENTION_DAYS),
        )

        # Invoked asynchronously by the products function
        self.function = python_function(
            self,
            "ProductEventsFunction",
            "product-events",
            "product_events.handler",
            environment={"EVENTS_DDB": events_table.table_name},
            dead_letter_queue=self.dlq,
        )
        self.function.add_to_role_policy(
            leading_keys_statement(PRODUCT_EVENTS_WRITE_SCOPE, events_table)
        )

        CfnOutput(
            self,
            "ProductEventsDlqUrl",
            value=self.dlq.queue_url,
            description="URL of the product events dead-letter queue",
        )
