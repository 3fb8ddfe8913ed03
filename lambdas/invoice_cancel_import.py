"""Lambda handler for the cancelImport WebSocket route."""

import json
import os
from functools import lru_cache
from typing import Any, Dict

import boto3

import invoice_transactions
import invoice_ws


# Environment configuration
invoices_table_name = os.environ["INVOICES_DDB"]
ws_api_endpoint = os.environ["INVOICE_WSAPI_ENDPOINT"]


@lru_cache(maxsize=1)
def _get_table():
    """Get or initialise the invoices table (cached)."""
    dynamodb = boto3.resource("dynamodb")
    return dynamodb.Table(invoices_table_name)


@lru_cache(maxsize=1)
def _get_api_client():
    """Get or initialise the WebSocket management client (cached)."""
    return invoice_ws.api_client(ws_api_endpoint)


def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """Cancel an import transaction that is still waiting for its upload.

    Only a GENERATED transaction can be cancelled; the client is told the
    resulting (or current) status either way.

    Args:
        event: WebSocket route event with body ``{"transactionId": ...}``.
        context: Lambda context object.

    Returns:
        WebSocket route response.
    """
    connection_id = event["requestContext"]["connectionId"]
    transaction_id = json.loads(event.get("body") or "{}").get("transactionId")
    table = _get_table()
    client = _get_api_client()

    transaction = (
        invoice_transactions.get_transaction(table, transaction_id)
        if transaction_id
        else None
    )
    if transaction is None:
        print(f"Transaction {transaction_id} not found")
        invoice_ws.send_transaction_status(
            client, connection_id, transaction_id, invoice_transactions.NOT_FOUND
        )
        return {"statusCode": 200, "body": "OK"}

    cancelled = invoice_transactions.update_transaction_status(
        table,
        transaction_id,
        invoice_transactions.CANCELLED,
        expected_status=invoice_transactions.GENERATED,
    )
    if cancelled:
        status = invoice_transactions.CANCELLED
        print(f"Transaction {transaction_id} cancelled")
    else:
        status = transaction["transactionStatus"]
        print(f"Can't cancel transaction {transaction_id} in status {status}")

    invoice_ws.send_transaction_status(client, connection_id, transaction_id, status)
    return {"statusCode": 200, "body": "OK"}
