"""Invoice import transactions stored in the invoices table under ``#transaction``."""

import time
from typing import Any, Dict, Optional

from botocore.exceptions import ClientError

TRANSACTION_PK = "#transaction"

# Transaction statuses
GENERATED = "GENERATED"
RECEIVED = "RECEIVED"
PROCESSED = "PROCESSED"
CANCELLED = "CANCELLED"
TIMEOUT = "TIMEOUT"
NON_VALID_INVOICE_NUMBER = "NON_VALID_INVOICE_NUMBER"
NOT_FOUND = "NOT_FOUND"

# A transaction not used within this window expires and times out
TRANSACTION_TTL_SECONDS = 120


def create_transaction(
    table,
    transaction_id: str,
    request_id: str,
    connection_id: str,
    endpoint: str,
    expires_in: int,
    ttl_seconds: int = TRANSACTION_TTL_SECONDS,
) -> Dict[str, Any]:
    """Store a new import transaction with status GENERATED."""
    now = int(time.time())
    item = {
        "pk": TRANSACTION_PK,
        "sk": transaction_id,
        "ttl": now + ttl_seconds,
        "requestId": request_id,
        "transactionStatus": GENERATED,
        "timestamp": now * 1000,
        "expiresIn": expires_in,
        "connectionId": connection_id,
        "endpoint": endpoint,
    }
    table.put_item(Item=item)
    return item


def get_transaction(table, transaction_id: str) -> Optional[Dict[str, Any]]:
    response = table.get_item(Key={"pk": TRANSACTION_PK, "sk": transaction_id})
    return response.get("Item")


def update_transaction_status(
    table,
    transaction_id: str,
    status: str,
    expected_status: Optional[str] = None,
) -> bool:
    """Set the status of an existing transaction.

    Args:
        table: The invoices table.
        transaction_id: Transaction key.
        status: New status.
        expected_status: When given, only update a transaction in this status.

    Returns:
        False when the transaction does not exist or is not in
        ``expected_status``.
    """
    condition = "attribute_exists(pk)"
    values: Dict[str, Any] = {":status": status}
    if expected_status is not None:
        condition += " AND transactionStatus = :expected"
        values[":expected"] = expected_status

    try:
        table.update_item(
            Key={"pk": TRANSACTION_PK, "sk": transaction_id},
            UpdateExpression="SET transactionStatus = :status",
            ConditionExpression=condition,
            ExpressionAttributeValues=values,
        )
        return True
    except ClientError as e:
        if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
            return False
        raise
