"""Lambda handler for the getImportUrl WebSocket route."""

import os
import uuid
from functools import lru_cache
from typing import Any, Dict

import boto3

import invoice_transactions
import invoice_ws


# Environment configuration
invoices_table_name = os.environ["INVOICES_DDB"]
bucket_name = os.environ["BUCKET_NAME"]
ws_api_endpoint = os.environ["INVOICE_WSAPI_ENDPOINT"]

URL_EXPIRES_SECONDS = 300


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
def _get_api_client():
    """Get or initialise the WebSocket management client (cached)."""
    return invoice_ws.api_client(ws_api_endpoint)


def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """Create an import transaction and send its presigned upload URL.

    The object key doubles as the transaction id, so the upload trigger can
    find the transaction from the uploaded object.

    Args:
        event: WebSocket route event.
        context: Lambda context object.

    Returns:
        WebSocket route response.
    """
    request_context = event.get("requestContext", {})
    connection_id = request_context["connectionId"]
    request_id = request_context.get("requestId", "")
    print(f"Import URL requested by {connection_id} ({request_id})")

    transaction_id = str(uuid.uuid4())
    signed_url = _get_s3_client().generate_presigned_url(
        "put_object",
        Params={"Bucket": bucket_name, "Key": transaction_id},
        ExpiresIn=URL_EXPIRES_SECONDS,
    )

    invoice_transactions.create_transaction(
        _get_table(),
        transaction_id,
        request_id=request_id,
        connection_id=connection_id,
        endpoint=ws_api_endpoint,
        expires_in=URL_EXPIRES_SECONDS,
    )

    invoice_ws.send_data(
        _get_api_client(),
        connection_id,
        {
            "url": signed_url,
            "expires": URL_EXPIRES_SECONDS,
            "transactionId": transaction_id,
        },
    )
    return {"statusCode": 200, "body": "OK"}
