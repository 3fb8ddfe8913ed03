"""CDK stack for the e-commerce REST API (products and orders endpoints)."""

import aws_cdk as cdk
from constructs import Construct
from aws_cdk import (
    aws_apigateway as apigateway,
    aws_lambda as lambda_,
    aws_logs as logs,
    RemovalPolicy,
    CfnOutput,
)

from stacks.common import LOG_RETENTION_DAYS, name_suffix

# Stage throttling
THROTTLING_RATE_LIMIT = 4
THROTTLING_BURST_LIMIT = 2

PAYMENT_TYPES = ["CASH", "DEBIT_CARD", "CREDIT_CARD", "PIX"]


class ECommerceApiStack(cdk.Stack):
    """REST API fronting the products, orders and order events functions."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        products_function: lambda_.IFunction,
        orders_function: lambda_.IFunction,
        order_events_fetch_function: lambda_.IFunction,
        **kwargs,
    ) -> None:
        """Initialise the e-commerce API stack.

        Args:
            scope: The scope in which this stack is defined.
            construct_id: The scoped construct ID.
            products_function: Handler for ``/products``.
            orders_function: Handler for ``/orders``.
            order_events_fetch_function: Handler for ``/orders/events``.
            **kwargs: Additional stack properties.
        """
        super().__init__(scope, construct_id, **kwargs)

        suffix = name_suffix(self)

        access_log_group = logs.LogGroup(
            self,
            "ECommerceApiLogs",
            log_group_name=f"/aws/apigateway/ecommerce-api{suffix}",
            retention=LOG_RETENTION_DAYS,
            removal_policy=RemovalPolicy.DESTROY,
        )

        self.api = apigateway.RestApi(
            self,
            "ECommerceApi",
            rest_api_name=f"ECommerce Service{suffix}",
            description="This is the ECommerce service",
            deploy_options=apigateway.StageOptions(
                access_log_destination=apigateway.LogGroupLogDestination(access_log_group),
                access_log_format=apigateway.AccessLogFormat.json_with_standard_fields(
                    caller=True,
                    http_method=True,
                    ip=True,
                    protocol=True,
                    request_time=True,
                    resource_path=True,
                    response_length=True,
                    status=True,
                    user=True,
                ),
                method_options={
                    "/*/*": apigateway.MethodDeploymentOptions(
                        throttling_rate_limit=THROTTLING_RATE_LIMIT,
                        throttling_burst_limit=THROTTLING_BURST_LIMIT,
                    )
                },
            ),
        )

        products_integration = apigateway.LambdaIntegration(products_function)

        product_request_validator = apigateway.RequestValidator(
            self,
            "ProductRequestValidator",
            rest_api=self.api,
            request_validator_name="Product request validator",
            validate_request_body=True,
        )
        product_model = apigateway.Model(
            self,
            "ProductModel",
            model_name="ProductModel",
            rest_api=self.api,
            content_type="application/json",
            schema=apigateway.JsonSchema(
                type=apigateway.JsonSchemaType.OBJECT,
                properties={
                    "productName": apigateway.JsonSchema(type=apigateway.JsonSchemaType.STRING),
                    "code": apigateway.JsonSchema(type=apigateway.JsonSchemaType.STRING),
                    "price": apigateway.JsonSchema(type=apigateway.JsonSchemaType.NUMBER),
                    "model": apigateway.JsonSchema(type=apigateway.JsonSchemaType.STRING),
                    "productUrl": apigateway.JsonSchema(type=apigateway.JsonSchemaType.STRING),
                },
                required=["productName", "code"],
            ),
        )

        # /products
        products_resource = self.api.root.add_resource("products")
        products_resource.add_method("GET", products_integration)
        products_resource.add_method(
            "POST",
            products_integration,
            request_validator=product_request_validator,
            request_models={"application/json": product_model},
        )

        # /products/{id}
        product_id_resource = products_resource.add_resource("{id}")
        product_id_resource.add_method("GET", products_integration)
        product_id_resource.add_method(
            "PUT",
            products_integration,
            request_validator=product_request_validator,
            request_models={"application/json": product_model},
        )
        product_id_resource.add_method("DELETE", products_integration)

        orders_integration = apigateway.LambdaIntegration(orders_function)

        # /orders
        orders_resource = self.api.root.add_resource("orders")

        # GET /orders, /orders?email=..., /orders?email=...&orderId=...
        orders_resource.add_method("GET", orders_integration)

        # DELETE /orders?email=...&orderId=...
        orders_resource.add_method(
            "DELETE",
            orders_integration,
            request_parameters={
                "method.request.querystring.email": True,
                "method.request.querystring.orderId": True,
            },
            request_validator_options=apigateway.RequestValidatorOptions(
                request_validator_name="Email and OrderId parameters validator",
                validate_request_parameters=True,
            ),
        )

        order_request_validator = apigateway.RequestValidator(
            self,
            "OrderRequestValidator",
            rest_api=self.api,
            request_validator_name="Order request validator",
            validate_request_body=True,
        )
        order_model = apigateway.Model(
            self,
            "OrderModel",
            model_name="OrderModel",
            rest_api=self.api,
            content_type="application/json",
            schema=apigateway.JsonSchema(
                type=apigateway.JsonSchemaType.OBJECT,
                properties={
                    "email": apigateway.JsonSchema(type=apigateway.JsonSchemaType.STRING),
                    "productIds": apigateway.JsonSchema(
                        type=apigateway.JsonSchemaType.ARRAY,
                        min_items=1,
                        items=apigateway.JsonSchema(type=apigateway.JsonSchemaType.STRING),
                    ),
                    "payment": apigateway.JsonSchema(
                        type=apigateway.JsonSchemaType.STRING,
                        enum=PAYMENT_TYPES,
                    ),
                },
                required=["email", "productIds", "payment"],
            ),
        )

        # POST /orders (API key required)
        orders_resource.add_method(
            "POST",
            orders_integration,
            request_validator=order_request_validator,
            request_models={"application/json": order_model},
            api_key_required=True,
        )

        api_key = self.api.add_api_key("ApiKey")
        usage_plan = self.api.add_usage_plan("UsagePlan", name="Low rate limit")
        usage_plan.add_api_key(api_key)
        usage_plan.add_api_stage(stage=self.api.deployment_stage)

        # GET /orders/events?email=...[&eventType=...]
        order_events_resource = orders_resource.add_resource("events")
        order_events_resource.add_method(
            "GET", apigateway.LambdaIntegration(order_events_fetch_function)
        )

        CfnOutput(
            self,
            "ApiUrl",
            value=self.api.url,
            description="URL of the e-commerce REST API",
        )
