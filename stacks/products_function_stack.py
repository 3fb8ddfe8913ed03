"""CDK stack for the products function behind ``/products``."""

import aws_cdk as cdk
from constructs import Construct
from aws_cdk import (
    aws_dynamodb as dynamodb,
    aws_lambda as lambda_,
)

from stacks.common import python_function


class ProductsFunctionStack(cdk.Stack):
    """Product catalogue CRUD handler."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        products_table: dynamodb.ITable,
        product_events_function: lambda_.IFunction,
        **kwargs,
    ) -> None:
        """Initialise the products function stack.

        Args:
            scope: The scope in which this stack is defined.
            construct_id: The scoped construct ID.
            products_table: The product catalogue table.
            product_events_function: Invoked asynchronously on every change.
            **kwargs: Additional stack properties.
        """
        super().__init__(scope, construct_id, **kwargs)

        self.function = python_function(
            self,
            "ProductsFunction",
            "products",
            "products.handler",
            environment={
                "PRODUCTS_DDB": products_table.table_name,
                "PRODUCT_EVENTS_FUNCTION_NAME": product_events_function.function_name,
            },
        )
        products_table.grant_read_write_data(self.function)
        product_events_function.grant_invoke(self.function)
