"""Lambda handler sending order emails from the order events queue."""

import json
import os
from functools import lru_cache
from typing import Any, Dict, List

import boto3


# Environment configuration
sender_email = os.environ["SENDER_EMAIL"]

SUBJECTS = {
    "ORDER_CREATED": "Your order was received",
    "ORDER_DELETED": "Your order was cancelled",
}


@lru_cache(maxsize=1)
def _get_ses_client():
    """Get or initialise the SES client (cached)."""
    return boto3.client("ses")


def handler(event: Dict[str, Any], context: Any) -> Dict[str, List[Dict[str, str]]]:
    """Send one email per order event in the batch.

    Each SQS message body is the SNS notification forwarded by the topic
    subscription. Failed messages are reported individually so only they
    are redelivered.

    Args:
        event: SQS event.
        context: Lambda context object.

    Returns:
        Dict with batchItemFailures list for partial failure handling.
    """
    batch_item_failures = []

    for record in event.get("Records", []):
        message_id = record.get("messageId")
        try:
            notification = json.loads(record["body"])
            envelope = json.loads(notification["Message"])
            _send_order_email(envelope["eventType"], json.loads(envelope["data"]))
        except Exception as e:
            print(f"Error sending email for message {message_id}: {str(e)}")
            if message_id:
                batch_item_failures.append({"itemIdentifier": message_id})

    return {"batchItemFailures": batch_item_failures}


def _send_order_email(event_type: str, order_event: Dict[str, Any]) -> None:
    subject = SUBJECTS.get(event_type, "Order update")
    _get_ses_client().send_email(
        Source=sender_email,
        Destination={"ToAddresses": [order_event["email"]]},
        Message={
            "Subject": {"Charset": "UTF-8", "Data": subject},
            "Body": {
                "Text": {
                    "Charset": "UTF-8",
                    "Data": f"{subject}: order {order_event['orderId']}",
                }
            },
        },
    )
    print(f"Sent {event_type} email for order {order_event['orderId']}")
