"""WebSocket connection helpers shared by the invoice functions."""

import json
from typing import Any, Dict

import boto3
from botocore.exceptions import ClientError


def api_client(endpoint: str):
    """API Gateway management client for the WebSocket stage at ``endpoint``."""
    return boto3.client("apigatewaymanagementapi", endpoint_url=endpoint)


def send_data(client, connection_id: str, data: Dict[str, Any]) -> bool:
    """Post ``data`` as JSON to a connected client.

    Returns:
        False when the client is no longer connected.
    """
    try:
        client.get_connection(ConnectionId=connection_id)
        client.post_to_connection(
            ConnectionId=connection_id,
            Data=json.dumps(data).encode("utf-8"),
        )
        return True
    except ClientError as e:
        if e.response["Error"]["Code"] == "GoneException":
            print(f"Connection {connection_id} is gone")
            return False
        raise


def send_transaction_status(
    client, connection_id: str, transaction_id: str, status: str
) -> bool:
    return send_data(
        client,
        connection_id,
        {"transactionId": transaction_id, "status": status},
    )


def disconnect_client(client, connection_id: str) -> bool:
    try:
        client.get_connection(ConnectionId=connection_id)
        client.delete_connection(ConnectionId=connection_id)
        return True
    except ClientError as e:
        if e.response["Error"]["Code"] == "GoneException":
            print(f"Connection {connection_id} is already closed")
            return False
        raise
