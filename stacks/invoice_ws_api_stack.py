"""CDK stack for the invoice import WebSocket API."""

import aws_cdk as cdk
from constructs import Construct
from aws_cdk import (
    aws_apigatewayv2 as apigwv2,
    aws_apigatewayv2_integrations as integrations,
    aws_dynamodb as dynamodb,
    aws_events as events,
    aws_iam as iam,
    aws_lambda as lambda_,
    aws_lambda_event_sources as lambda_event_sources,
    aws_s3 as s3,
    aws_s3_notifications as s3n,
    aws_sqs as sqs,
    Duration,
    RemovalPolicy,
    CfnOutput,
)

from stacks.common import (
    DLQ_RETENTION_DAYS,
    leading_keys_statement,
    name_suffix,
    python_function,
)
from topology.definitions import (
    INVOICE_EVENTS_SOURCE,
    INVOICE_EVENTS_WRITE_SCOPE,
    TRANSACTION_READ_WRITE_SCOPE,
    TRANSACTION_WRITE_SCOPE,
)

STAGE_NAME = "prod"

# Invoices table capacity
INVOICES_READ_CAPACITY = 1
INVOICES_WRITE_CAPACITY = 1


class InvoiceWSApiStack(cdk.Stack):
    """WebSocket API importing invoices uploaded to S3."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        events_table: dynamodb.ITable,
        audit_bus: events.IEventBus,
        **kwargs,
    ) -> None:
        """Initialise the invoice WebSocket API stack.

        Args:
            scope: The scope in which this stack is defined.
            construct_id: The scoped construct ID.
            events_table: Shared events table written by the invoice events function.
            audit_bus: Bus receiving invalid invoice and import timeout events.
            **kwargs: Additional stack properties.
        """
        super().__init__(scope, construct_id, **kwargs)

        suffix = name_suffix(self)

        # Invoices and import transactions, streamed to the invoice events function
        self.invoices_table = dynamodb.Table(
            self,
            "InvoicesTable",
            table_name=f"invoices{suffix}",
            partition_key=dynamodb.Attribute(
                name="pk",
                type=dynamodb.AttributeType.STRING,
            ),
            sort_key=dynamodb.Attribute(
                name="sk",
                type=dynamodb.AttributeType.STRING,
            ),
            billing_mode=dynamodb.BillingMode.PROVISIONED,
            read_capacity=INVOICES_READ_CAPACITY,
            write_capacity=INVOICES_WRITE_CAPACITY,
            time_to_live_attribute="ttl",
            stream=dynamodb.StreamViewType.NEW_AND_OLD_IMAGES,
            removal_policy=RemovalPolicy.DESTROY,
        )

        self.bucket = s3.Bucket(
            self,
            "InvoiceBucket",
            removal_policy=RemovalPolicy.DESTROY,
        )

        # Connection lifecycle handlers
        self.connect_function = python_function(
            self,
            "InvoiceConnectFunction",
            "invoice-connect",
            "invoice_connection.connect_handler",
        )
        self.disconnect_function = python_function(
            self,
            "InvoiceDisconnectFunction",
            "invoice-disconnect",
            "invoice_connection.disconnect_handler",
        )

        self.api = apigwv2.WebSocketApi(
            self,
            "InvoiceWSApi",
            api_name=f"InvoiceWSApi{suffix}",
            description="This is the Invoice WebSocket API",
            connect_route_options=apigwv2.WebSocketRouteOptions(
                integration=integrations.WebSocketLambdaIntegration(
                    "ConnectIntegration", self.connect_function
                ),
            ),
            disconnect_route_options=apigwv2.WebSocketRouteOptions(
                integration=integrations.WebSocketLambdaIntegration(
                    "DisconnectIntegration", self.disconnect_function
                ),
            ),
        )

        self.stage = apigwv2.WebSocketStage(
            self,
            "InvoiceWSApiStage",
            web_socket_api=self.api,
            stage_name=STAGE_NAME,
            auto_deploy=True,
        )

        connections_arn = (
            f"arn:aws:execute-api:{self.region}:{self.account}:"
            f"{self.api.api_id}/{STAGE_NAME}"
        )
        manage_connections = iam.PolicyStatement(
            effect=iam.Effect.ALLOW,
            actions=["execute-api:ManageConnections"],
            resources=[
                f"{connections_arn}/POST/@connections/*",
                f"{connections_arn}/GET/@connections/*",
                f"{connections_arn}/DELETE/@connections/*",
            ],
        )

        socket_environment = {
            "INVOICES_DDB": self.invoices_table.table_name,
            "INVOICE_WSAPI_ENDPOINT": self.stage.callback_url,
        }

        # getImportUrl: creates an import transaction and a presigned upload URL
        self.get_url_function = python_function(
            self,
            "InvoiceGetUrlFunction",
            "invoice-get-url",
            "invoice_get_url.handler",
            environment={**socket_environment, "BUCKET_NAME": self.bucket.bucket_name},
        )
        self.get_url_function.add_to_role_policy(
            leading_keys_statement(TRANSACTION_WRITE_SCOPE, self.invoices_table)
        )
        self.get_url_function.add_to_role_policy(
            iam.PolicyStatement(
                effect=iam.Effect.ALLOW,
                actions=["s3:PutObject"],
                resources=[self.bucket.arn_for_objects("*")],
            )
        )
        self.get_url_function.add_to_role_policy(manage_connections)

        # Import: triggered by uploads to the bucket
        self.import_function = python_function(
            self,
            "InvoiceImportFunction",
            "invoice-import",
            "invoice_import.handler",
            environment={
                **socket_environment,
                "AUDIT_BUS_NAME": audit_bus.event_bus_name,
            },
        )
        self.invoices_table.grant_read_write_data(self.import_function)
        audit_bus.grant_put_events_to(self.import_function)
        self.bucket.add_event_notification(
            s3.EventType.OBJECT_CREATED_PUT,
            s3n.LambdaDestination(self.import_function),
        )
        self.import_function.add_to_role_policy(
            iam.PolicyStatement(
                effect=iam.Effect.ALLOW,
                actions=["s3:DeleteObject", "s3:GetObject"],
                resources=[self.bucket.arn_for_objects("*")],
            )
        )
        self.import_function.add_to_role_policy(manage_connections)

        # cancelImport: cancels a transaction still waiting for its upload
        self.cancel_import_function = python_function(
            self,
            "InvoiceCancelImportFunction",
            "invoice-cancel-import",
            "invoice_cancel_import.handler",
            environment=socket_environment,
        )
        self.cancel_import_function.add_to_role_policy(
            leading_keys_statement(TRANSACTION_READ_WRITE_SCOPE, self.invoices_table)
        )
        self.cancel_import_function.add_to_role_policy(manage_connections)

        self.api.add_route(
            "getImportUrl",
            integration=integrations.WebSocketLambdaIntegration(
                "GetImportUrlIntegration", self.get_url_function
            ),
        )
        self.api.add_route(
            "cancelImport",
            integration=integrations.WebSocketLambdaIntegration(
                "CancelImportIntegration", self.cancel_import_function
            ),
        )

        # Invoice events: stream consumer with bisecting retries and a DLQ
        self.invoice_events_function = python_function(
            self,
            "InvoiceEventsFunction",
            "invoice-events",
            "invoice_events.handler",
            environment={
                "EVENTS_DDB": events_table.table_name,
                "INVOICE_WSAPI_ENDPOINT": self.stage.callback_url,
                "AUDIT_BUS_NAME": audit_bus.event_bus_name,
            },
        )
        audit_bus.grant_put_events_to(self.invoice_events_function)
        self.invoice_events_function.add_to_role_policy(
            leading_keys_statement(INVOICE_EVENTS_WRITE_SCOPE, events_table)
        )
        self.invoice_events_function.add_to_role_policy(manage_connections)

        self.invoice_events_dlq = sqs.Queue(
            self,
            "InvoiceEventsDlq",
            queue_name=f"{INVOICE_EVENTS_SOURCE.dead_letter_queue_name}{suffix}",
            retention_period=Duration.days(DLQ_RETENTION_DAYS),
        )

        self.invoice_events_function.add_event_source(
            lambda_event_sources.DynamoEventSource(
                self.invoices_table,
                starting_position=lambda_.StartingPosition.TRIM_HORIZON,
                batch_size=INVOICE_EVENTS_SOURCE.batch_size,
                bisect_batch_on_error=INVOICE_EVENTS_SOURCE.bisect_batch_on_error,
                on_failure=lambda_event_sources.SqsDlq(self.invoice_events_dlq),
                report_batch_item_failures=INVOICE_EVENTS_SOURCE.report_batch_item_failures,
                retry_attempts=INVOICE_EVENTS_SOURCE.retry_attempts,
            )
        )

        # Stack outputs
        CfnOutput(
            self,
            "InvoiceWSApiUrl",
            value=self.stage.url,
            description="URL of the invoice WebSocket API stage",
        )

        CfnOutput(
            self,
            "InvoiceBucketName",
            value=self.bucket.bucket_name,
            description="Name of the invoice upload bucket",
        )

        CfnOutput(
            self,
            "InvoiceEventsDlqUrl",
            value=self.invoice_events_dlq.queue_url,
            description="URL of the invoice events DLQ",
        )
