"""CDK stack for the shared events table."""

import aws_cdk as cdk
from constructs import Construct
from aws_cdk import (
    aws_dynamodb as dynamodb,
    RemovalPolicy,
    CfnOutput,
)

from stacks.common import name_suffix

EMAIL_INDEX_NAME = "emailIndex"


class EventsTableStack(cdk.Stack):
    """Events table written by the order and invoice event functions.

    Writers share the table and are kept apart by partition-key prefix
    (``#order_*``, ``#invoice_*``).
    """

    def __init__(self, scope: Construct, construct_id: str, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.table = dynamodb.Table(
            self,
            "EventsTable",
            table_name=f"events{name_suffix(self)}",
            partition_key=dynamodb.Attribute(
                name="pk",
                type=dynamodb.AttributeType.STRING,
            ),
            sort_key=dynamodb.Attribute(
                name="sk",
                type=dynamodb.AttributeType.STRING,
            ),
            time_to_live_attribute="ttl",
            billing_mode=dynamodb.BillingMode.PAY_PER_REQUEST,
            removal_policy=RemovalPolicy.DESTROY,
        )

        self.table.add_global_secondary_index(
            index_name=EMAIL_INDEX_NAME,
            partition_key=dynamodb.Attribute(
                name="email",
                type=dynamodb.AttributeType.STRING,
            ),
            sort_key=dynamodb.Attribute(
                name="sk",
                type=dynamodb.AttributeType.STRING,
            ),
            projection_type=dynamodb.ProjectionType.ALL,
        )

        CfnOutput(
            self,
            "EventsTableName",
            value=self.table.table_name,
            description="Name of the events DynamoDB table",
        )
