"""Lambda handler importing invoices uploaded to the invoice bucket."""

import json
import os
import time
from functools import lru_cache
from typing import Any, Dict
from urllib.parse import unquote_plus

import boto3

import invoice_transactions
import invoice_ws


# Environment configuration
invoices_table_name = os.environ["INVOICES_DDB"]
ws_api_endpoint = os.environ["INVOICE_WSAPI_ENDPOINT"]
audit_bus_name = os.environ["AUDIT_BUS_NAME"]


@lru_cache(maxsize=1)
def _get_table():
    """Get or initialise the invoices table (cached)."""
    dynamodb = boto3.resource("dynamodb")
    return dynamodb.Table(invoices_table_name)


@lru_cache(maxsize=1)
def _get_s3_client():
    """Get or initialise the S3 client (cached)."""
    return boto3.client("s3")


@lru_cache(maxsize=1)
def _get_events_client():
    """Get or initialise the EventBridge client (cached)."""
    return boto3.client("events")


@lru_cache(maxsize=1)
def _get_api_client():
    """Get or initialise the WebSocket management client (cached)."""
    return invoice_ws.api_client(ws_api_endpoint)


def handler(event: Dict[str, Any], context: Any) -> None:
    """Import each uploaded invoice whose transaction is still GENERATED.

    Args:
        event: S3 ObjectCreated:Put event.
        context: Lambda context object.
    """
    for record in event.get("Records", []):
        bucket = record["s3"]["bucket"]["name"]
        key = unquote_plus(record["s3"]["object"]["key"])
        _import_invoice(bucket, key)


def _import_invoice(bucket: str, key: str) -> None:
    table = _get_table()
    client = _get_api_client()

    transaction = invoice_transactions.get_transaction(table, key)
    if transaction is None:
        print(f"No import transaction for object {key}")
        return

    connection_id = transaction["connectionId"]
    status = transaction["transactionStatus"]
    if status != invoice_transactions.GENERATED:
        print(f"Non valid transaction status for {key}: {status}")
        invoice_ws.send_transaction_status(client, connection_id, key, status)
        invoice_ws.disconnect_client(client, connection_id)
        return

    invoice_transactions.update_transaction_status(table, key, invoice_transactions.RECEIVED)
    invoice_ws.send_transaction_status(
        client, connection_id, key, invoice_transactions.RECEIVED
    )

    s3 = _get_s3_client()
    invoice = json.loads(s3.get_object(Bucket=bucket, Key=key)["Body"].read())

    if invoice.get("invoiceNumber"):
        table.put_item(
            Item={
                "pk": f"#invoice_{invoice['customerName']}",
                "sk": invoice["invoiceNumber"],
                "ttl": 0,
                "totalValue": invoice.get("totalValue"),
                "productId": invoice.get("productId"),
                "quantity": invoice.get("quantity"),
                "transactionId": key,
                "createdAt": int(time.time() * 1000),
            }
        )
        s3.delete_object(Bucket=bucket, Key=key)
        invoice_transactions.update_transaction_status(
            table, key, invoice_transactions.PROCESSED
        )
        invoice_ws.send_transaction_status(
            client, connection_id, key, invoice_transactions.PROCESSED
        )
        print(f"Invoice {invoice['invoiceNumber']} imported from {key}")
    else:
        print(f"Invoice import failed: no invoice number in {key}")
        invoice_transactions.update_transaction_status(
            table, key, invoice_transactions.NON_VALID_INVOICE_NUMBER
        )
        invoice_ws.send_transaction_status(
            client, connection_id, key, invoice_transactions.NON_VALID_INVOICE_NUMBER
        )
        _get_events_client().put_events(
            Entries=[
                {
                    "Source": "app.invoice",
                    "DetailType": "invoice",
                    "Detail": json.dumps(
                        {
                            "errorDetail": "FAIL_NO_INVOICE_NUMBER",
                            "info": {
                                "invoiceKey": key,
                                "customerName": invoice.get("customerName"),
                            },
                        }
                    ),
                    "EventBusName": audit_bus_name,
                }
            ]
        )

    invoice_ws.disconnect_client(client, connection_id)
