"""Lambda handler for GET /orders/events."""

import json
import os
from functools import lru_cache
from typing import Any, Dict

import boto3


# Environment configuration
events_table_name = os.environ["EVENTS_DDB"]

EMAIL_INDEX_NAME = "emailIndex"


@lru_cache(maxsize=1)
def _get_table():
    """Get or initialise the events table (cached)."""
    dynamodb = boto3.resource("dynamodb")
    return dynamodb.Table(events_table_name)


def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """List the order events of a customer, optionally of one event type.

    Args:
        event: API Gateway proxy event with ``email`` and optional
            ``eventType`` query parameters.
        context: Lambda context object.

    Returns:
        API Gateway proxy response.
    """
    params = event.get("queryStringParameters") or {}
    email = params.get("email")
    event_type = params.get("eventType")

    if not email:
        return {
            "statusCode": 400,
            "body": json.dumps({"error": "Missing email query parameter"}),
        }

    key_condition = "email = :email"
    values: Dict[str, Any] = {":email": email}
    if event_type:
        key_condition += " AND begins_with(sk, :prefix)"
        values[":prefix"] = event_type

    try:
        items = _get_table().query(
            IndexName=EMAIL_INDEX_NAME,
            KeyConditionExpression=key_condition,
            ExpressionAttributeValues=values,
        ).get("Items", [])
    except Exception as e:
        print(f"Error fetching order events for {email}: {str(e)}")
        return {
            "statusCode": 500,
            "body": json.dumps({"error": "Internal server error"}),
        }

    order_events = [
        {
            "createdAt": item.get("createdAt"),
            "eventType": item.get("eventType"),
            "email": item.get("email"),
            "orderId": item.get("info", {}).get("orderId"),
            "requestId": item.get("requestId"),
        }
        for item in items
    ]
    return {"statusCode": 200, "body": json.dumps(order_events, default=str)}
