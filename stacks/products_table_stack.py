"""CDK stack for the product catalogue table."""

import aws_cdk as cdk
from constructs import Construct
from aws_cdk import (
    aws_dynamodb as dynamodb,
    RemovalPolicy,
    CfnOutput,
)

from stacks.common import name_suffix


class ProductsTableStack(cdk.Stack):
    """Product catalogue table, written by the products function and read by orders."""

    def __init__(self, scope: Construct, construct_id: str, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.table = dynamodb.Table(
            self,
            "ProductsTable",
            table_name=f"products{name_suffix(self)}",
            partition_key=dynamodb.Attribute(
                name="id",
                type=dynamodb.AttributeType.STRING,
            ),
            billing_mode=dynamodb.BillingMode.PAY_PER_REQUEST,
            removal_policy=RemovalPolicy.DESTROY,
        )

        CfnOutput(
            self,
            "ProductsTableName",
            value=self.table.table_name,
            description="Name of the products DynamoDB table",
        )
