"""Lambda handler recording product changes sent by the products function."""

import os
import time
from decimal import Decimal
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
    """Store one product event under ``#product_<code>``.

    Invoked asynchronously; a raised error is retried by Lambda and then sent
    to the function's dead-letter queue.

    Args:
        event: Product event with ``eventType``, ``productId``,
            ``productCode``, ``productPrice`` and ``requestId``.
        context: Lambda context object.
    """
    event_type = event["eventType"]
    product_code = event["productCode"]

    timestamp = int(time.time() * 1000)
    price = event.get("productPrice")
    item = {
        "pk": f"#product_{product_code}",
        "sk": f"{event_type}#{timestamp}",
        "ttl": int(timestamp / 1000) + event_ttl_seconds,
        "createdAt": timestamp,
        "requestId": event.get("requestId", ""),
        "eventType": event_type,
        "info": {
            "productId": event["productId"],
            "price": Decimal(str(price)) if price is not None else None,
        },
    }
    _get_table().put_item(Item=item)
    print(f"Stored {event_type} event for product {product_code}")
