"""WebSocket connection lifecycle handlers for the invoice API."""

from typing import Any, Dict


def connect_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    connection_id = event.get("requestContext", {}).get("connectionId")
    print(f"Client connected: {connection_id}")
    return {"statusCode": 200, "body": "OK"}


def disconnect_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    connection_id = event.get("requestContext", {}).get("connectionId")
    print(f"Client disconnected: {connection_id}")
    return {"statusCode": 200, "body": "OK"}
