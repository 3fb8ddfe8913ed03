"""Lambda handler for the invoices table stream."""

import json
import os
import time
from functools import lru_cache
from typing import Any, Dict, List, Optional

import boto3

import invoice_transactions
import invoice_ws


# Environment configuration
events_table_name = os.environ["EVENTS_DDB"]
ws_api_endpoint = os.environ["INVOICE_WSAPI_ENDPOINT"]
audit_bus_name = os.environ["AUDIT_BUS_NAME"]
event_ttl_seconds = int(os.environ.get("EVENT_TTL_SECONDS", "300"))

INVOICE_CREATED = "INVOICE_CREATED"


@lru_cache(maxsize=1)
def _get_table():
    """Get or initialise the events table (cached)."""
    dynamodb = boto3.resource("dynamodb")
    return dynamodb.Table(events_table_name)


@lru_cache(maxsize=1)
def _get_events_client():
    """Get or initialise the EventBridge client (cached)."""
    return boto3.client("events")


@lru_cache(maxsize=1)
def _get_api_client():
    """Get or initialise the WebSocket management client (cached)."""
    return invoice_ws.api_client(ws_api_endpoint)


def _string(image: Dict[str, Any], name: str) -> Optional[str]:
    """Read a string (or number, as text) attribute from a stream image."""
    value = image.get(name, {})
    return value.get("S", value.get("N"))


def handler(event: Dict[str, Any], context: Any) -> Dict[str, List[Dict[str, str]]]:
    """Record invoice events and time out expired import transactions.

    INSERTs of ``#invoice_*`` items are recorded in the events table. A
    REMOVE of a ``#transaction`` item still in GENERATED status means its
    TTL ran out before the upload: the client is notified and a TIMEOUT
    audit event is published.

    Implements partial batch failure reporting for resilience.

    Args:
        event: DynamoDB Stream event from the invoices table.
        context: Lambda context object.

    Returns:
        Dict with batchItemFailures list for partial failure handling.
    """
    batch_item_failures = []

    for record in event.get("Records", []):
        sequence_number = record.get("dynamodb", {}).get("SequenceNumber")

        try:
            event_name = record.get("eventName")
            keys = record.get("dynamodb", {}).get("Keys", {})
            pk = _string(keys, "pk") or ""

            if event_name == "INSERT" and pk.startswith("#invoice_"):
                _record_invoice_event(record["dynamodb"]["NewImage"])
            elif event_name == "REMOVE" and pk == invoice_transactions.TRANSACTION_PK:
                _handle_expired_transaction(record["dynamodb"].get("OldImage", {}))
            else:
                print(f"Skipping {event_name} on {pk}")

        except Exception as e:
            print(f"Error processing record {sequence_number}: {str(e)}")
            if sequence_number:
                batch_item_failures.append({"itemIdentifier": sequence_number})

    return {"batchItemFailures": batch_item_failures}


def _record_invoice_event(invoice: Dict[str, Any]) -> None:
    timestamp = int(time.time() * 1000)
    item = {
        "pk": _string(invoice, "pk"),
        "sk": f"{INVOICE_CREATED}#{timestamp}",
        "ttl": int(timestamp / 1000) + event_ttl_seconds,
        "createdAt": timestamp,
        "eventType": INVOICE_CREATED,
        "info": {
            "transactionId": _string(invoice, "transactionId"),
            "invoiceNumber": _string(invoice, "sk"),
        },
    }
    _get_table().put_item(Item=item)
    print(f"Recorded {INVOICE_CREATED} for invoice {item['info']['invoiceNumber']}")


def _handle_expired_transaction(transaction: Dict[str, Any]) -> None:
    transaction_id = _string(transaction, "sk")
    status = _string(transaction, "transactionStatus")
    if status != invoice_transactions.GENERATED:
        print(f"Transaction {transaction_id} removed in status {status}")
        return

    print(f"Transaction {transaction_id} timed out")
    connection_id = _string(transaction, "connectionId")
    client = _get_api_client()
    invoice_ws.send_transaction_status(
        client, connection_id, transaction_id, invoice_transactions.TIMEOUT
    )

    _get_events_client().put_events(
        Entries=[
            {
                "Source": "app.invoice",
                "DetailType": "invoice",
                "Detail": json.dumps(
                    {"errorDetail": "TIMEOUT", "transactionId": transaction_id}
                ),
                "EventBusName": audit_bus_name,
            }
        ]
    )
    invoice_ws.disconnect_client(client, connection_id)
