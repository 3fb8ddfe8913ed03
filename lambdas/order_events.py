"""Lambda handler recording order events from the order events topic."""

import json
import os
import time
from functools import lru_cache
from typing import Any, Dict

import boto3


# Environment configuration
events_table_name = os.environ["EVENTS_DDB"]
event_ttl_seconds = int(os.environ.get("EVENT_TTL_SECONDS", "300"))


@lru_cache(maxsize=1)
def _get_table():
    """Get or initialise the events table (cached)."""
    dynamodb = boto3.resource("dynamodb")
    return dynamodb.Table(events_table_name)


def handler(event: Dict[str, Any], context: Any) -> None:
    """Store each order event under ``#order_<orderId>``.

    Args:
        event: SNS event with one or more notification records.
        context: Lambda context object.
    """
    for record in event.get("Records", []):
        notification = record["Sns"]
        _store_order_event(notification["MessageId"], json.loads(notification["Message"]))


def _store_order_event(message_id: str, envelope: Dict[str, Any]) -> None:
    event_type = envelope["eventType"]
    order_event = json.loads(envelope["data"])
    order_id = order_event["orderId"]

    timestamp = int(time.time() * 1000)
    item = {
        "pk": f"#order_{order_id}",
        "sk": f"{event_type}#{timestamp}",
        "ttl": int(timestamp / 1000) + event_ttl_seconds,
        "email": order_event["email"],
        "createdAt": timestamp,
        "requestId": order_event.get("requestId", ""),
        "eventType": event_type,
        "info": {
            "orderId": order_id,
            "productCodes": order_event.get("productCodes", []),
            "messageId": message_id,
        },
    }
    _get_table().put_item(Item=item)
    print(f"Stored {event_type} event for order {order_id}")
