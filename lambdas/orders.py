"""Lambda handler for the /orders REST resource."""

import json
import os
import uuid
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, List

import boto3
from botocore.exceptions import ClientError


# Environment configuration
products_table_name = os.environ["PRODUCTS_DDB"]
orders_table_name = os.environ["ORDERS_DDB"]
order_events_topic_arn = os.environ["ORDER_EVENTS_TOPIC_ARN"]
audit_bus_name = os.environ["AUDIT_BUS_NAME"]

ORDER_CREATED = "ORDER_CREATED"
ORDER_DELETED = "ORDER_DELETED"

# Read by the ProductNotFound metric filter on this function's log group
PRODUCT_NOT_FOUND_MESSAGE = "Some product was not found"


@lru_cache(maxsize=1)
def _get_products_table():
    """Get or initialise the products table (cached)."""
    dynamodb = boto3.resource("dynamodb")
    return dynamodb.Table(products_table_name)


@lru_cache(maxsize=1)
def _get_orders_table():
    """Get or initialise the orders table (cached)."""
    dynamodb = boto3.resource("dynamodb")
    return dynamodb.Table(orders_table_name)


@lru_cache(maxsize=1)
def _get_sns_client():
    """Get or initialise the SNS client (cached)."""
    return boto3.client("sns")


@lru_cache(maxsize=1)
def _get_events_client():
    """Get or initialise the EventBridge client (cached)."""
    return boto3.client("events")


def _response(status_code: int, body: Any) -> Dict[str, Any]:
    return {"statusCode": status_code, "body": json.dumps(body, default=str)}


def _to_order_response(order: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "email": order["pk"],
        "id": order["sk"],
        "createdAt": order.get("createdAt"),
        "products": order.get("products", []),
        "billing": order.get("billing", {}),
    }


def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """Dispatch a REST request on /orders by HTTP method.

    Args:
        event: API Gateway proxy event.
        context: Lambda context object.

    Returns:
        API Gateway proxy response.
    """
    method = event.get("httpMethod")
    params = event.get("queryStringParameters") or {}
    request_id = event.get("requestContext", {}).get("requestId", "")

    try:
        if method == "GET":
            return _get_orders(params)
        if method == "POST":
            return _create_order(json.loads(event.get("body") or "{}"), request_id)
        if method == "DELETE":
            return _delete_order(params.get("email"), params.get("orderId"), request_id)
        return _response(400, {"error": f"Unsupported method: {method}"})

    except json.JSONDecodeError:
        return _response(400, {"error": "Invalid JSON in request body"})
    except Exception as e:
        print(f"Error handling {method} /orders: {str(e)}")
        return _response(500, {"error": "Internal server error"})


def _get_orders(params: Dict[str, str]) -> Dict[str, Any]:
    email = params.get("email")
    order_id = params.get("orderId")
    table = _get_orders_table()

    if email and order_id:
        item = table.get_item(Key={"pk": email, "sk": order_id}).get("Item")
        if not item:
            return _response(404, {"error": "Order not found"})
        return _response(200, _to_order_response(item))

    if email:
        items = table.query(
            KeyConditionExpression="pk = :email",
            ExpressionAttributeValues={":email": email},
        ).get("Items", [])
    else:
        items = table.scan().get("Items", [])
    return _response(200, [_to_order_response(item) for item in items])


def _find_products(product_ids: List[str]) -> List[Dict[str, Any]]:
    """Look up every referenced product; missing ones are left out."""
    table = _get_products_table()
    products = []
    for product_id in dict.fromkeys(product_ids):
        item = table.get_item(Key={"id": product_id}).get("Item")
        if item:
            products.append(item)
    return products


def _create_order(body: Dict[str, Any], request_id: str) -> Dict[str, Any]:
    email = body.get("email")
    product_ids = body.get("productIds") or []
    payment = body.get("payment")

    if not email or not product_ids or not payment:
        return _response(400, {"error": "email, productIds and payment are required"})

    products = _find_products(product_ids)
    if len(products) != len(set(product_ids)):
        print(PRODUCT_NOT_FOUND_MESSAGE)
        _publish_audit_event(
            {
                "reason": "PRODUCT_NOT_FOUND",
                "orderRequest": body,
                "requestId": request_id,
            }
        )
        return _response(404, {"error": PRODUCT_NOT_FOUND_MESSAGE})

    order = {
        "pk": email,
        "sk": str(uuid.uuid4()),
        "createdAt": datetime.now(timezone.utc).isoformat(),
        "billing": {"payment": payment},
        "products": [
            {"id": product["id"], "code": product.get("code")} for product in products
        ],
    }
    _get_orders_table().put_item(Item=order)
    print(f"Order {order['sk']} created for {email}")

    _publish_order_event(order, ORDER_CREATED, request_id)
    return _response(201, _to_order_response(order))


def _delete_order(email: str, order_id: str, request_id: str) -> Dict[str, Any]:
    if not email or not order_id:
        return _response(400, {"error": "email and orderId are required"})

    try:
        response = _get_orders_table().delete_item(
            Key={"pk": email, "sk": order_id},
            ConditionExpression="attribute_exists(pk)",
            ReturnValues="ALL_OLD",
        )
    except ClientError as e:
        if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
            return _response(404, {"error": "Order not found"})
        raise

    order = response["Attributes"]
    print(f"Order {order_id} deleted for {email}")

    _publish_order_event(order, ORDER_DELETED, request_id)
    return _response(200, _to_order_response(order))


def _publish_order_event(order: Dict[str, Any], event_type: str, request_id: str) -> None:
    """Publish an order lifecycle event, tagged with its type for subscription filters."""
    order_event = {
        "email": order["pk"],
        "orderId": order["sk"],
        "billing": order.get("billing", {}),
        "productCodes": [product.get("code") for product in order.get("products", [])],
        "requestId": request_id,
    }
    envelope = {"eventType": event_type, "data": json.dumps(order_event, default=str)}

    _get_sns_client().publish(
        TopicArn=order_events_topic_arn,
        Message=json.dumps(envelope),
        MessageAttributes={
            "eventType": {"DataType": "String", "StringValue": event_type},
        },
    )
    print(f"Published {event_type} for order {order['sk']}")


def _publish_audit_event(detail: Dict[str, Any]) -> None:
    _get_events_client().put_events(
        Entries=[
            {
                "Source": "app.order",
                "DetailType": "order",
                "Detail": json.dumps(detail, default=str),
                "EventBusName": audit_bus_name,
            }
        ]
    )
