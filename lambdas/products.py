"""Lambda handler for the /products REST resource."""

import json
import os
import uuid
from decimal import Decimal
from functools import lru_cache
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import ClientError


# Environment configuration
products_table_name = os.environ["PRODUCTS_DDB"]
product_events_function_name = os.environ["PRODUCT_EVENTS_FUNCTION_NAME"]

PRODUCT_CREATED = "PRODUCT_CREATED"
PRODUCT_UPDATED = "PRODUCT_UPDATED"
PRODUCT_DELETED = "PRODUCT_DELETED"

PRODUCT_FIELDS = ("productName", "code", "price", "model", "productUrl")


@lru_cache(maxsize=1)
def _get_table():
    """Get or initialise the products table (cached)."""
    dynamodb = boto3.resource("dynamodb")
    return dynamodb.Table(products_table_name)


@lru_cache(maxsize=1)
def _get_lambda_client():
    """Get or initialise the Lambda client (cached)."""
    return boto3.client("lambda")


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    return str(value)


def _response(status_code: int, body: Any) -> Dict[str, Any]:
    return {"statusCode": status_code, "body": json.dumps(body, default=_json_default)}


def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """Dispatch a REST request on /products or /products/{id}.

    Args:
        event: API Gateway proxy event.
        context: Lambda context object.

    Returns:
        API Gateway proxy response.
    """
    method = event.get("httpMethod")
    product_id = (event.get("pathParameters") or {}).get("id")
    request_id = event.get("requestContext", {}).get("requestId", "")

    try:
        if method == "GET":
            return _get_product(product_id) if product_id else _list_products()
        if method == "POST" and not product_id:
            return _create_product(_parse_body(event), request_id)
        if method == "PUT" and product_id:
            return _update_product(product_id, _parse_body(event), request_id)
        if method == "DELETE" and product_id:
            return _delete_product(product_id, request_id)
        return _response(400, {"error": f"Unsupported method: {method}"})

    except json.JSONDecodeError:
        return _response(400, {"error": "Invalid JSON in request body"})
    except Exception as e:
        print(f"Error handling {method} /products: {str(e)}")
        return _response(500, {"error": "Internal server error"})


def _parse_body(event: Dict[str, Any]) -> Dict[str, Any]:
    # DynamoDB rejects floats
    return json.loads(event.get("body") or "{}", parse_float=Decimal)


def _list_products() -> Dict[str, Any]:
    return _response(200, _get_table().scan().get("Items", []))


def _get_product(product_id: str) -> Dict[str, Any]:
    item = _get_table().get_item(Key={"id": product_id}).get("Item")
    if not item:
        return _response(404, {"error": "Product not found"})
    return _response(200, item)


def _product_fields(body: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Known product fields from ``body``, or None if a required one is missing."""
    if not body.get("productName") or not body.get("code"):
        return None
    return {name: body[name] for name in PRODUCT_FIELDS if body.get(name) is not None}


def _create_product(body: Dict[str, Any], request_id: str) -> Dict[str, Any]:
    fields = _product_fields(body)
    if fields is None:
        return _response(400, {"error": "productName and code are required"})

    product = {"id": str(uuid.uuid4()), **fields}
    _get_table().put_item(Item=product)
    print(f"Product {product['id']} created")

    _send_product_event(product, PRODUCT_CREATED, request_id)
    return _response(201, product)


def _update_product(product_id: str, body: Dict[str, Any], request_id: str) -> Dict[str, Any]:
    fields = _product_fields(body)
    if fields is None:
        return _response(400, {"error": "productName and code are required"})

    names = {"#id": "id", **{f"#{name}": name for name in fields}}
    values = {f":{name}": value for name, value in fields.items()}
    try:
        response = _get_table().update_item(
            Key={"id": product_id},
            UpdateExpression="SET " + ", ".join(f"#{name} = :{name}" for name in fields),
            ConditionExpression="attribute_exists(#id)",
            ExpressionAttributeNames=names,
            ExpressionAttributeValues=values,
            ReturnValues="ALL_NEW",
        )
    except ClientError as e:
        if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
            return _response(404, {"error": "Product not found"})
        raise

    product = response["Attributes"]
    print(f"Product {product_id} updated")

    _send_product_event(product, PRODUCT_UPDATED, request_id)
    return _response(200, product)


def _delete_product(product_id: str, request_id: str) -> Dict[str, Any]:
    try:
        response = _get_table().delete_item(
            Key={"id": product_id},
            ConditionExpression="attribute_exists(#id)",
            ExpressionAttributeNames={"#id": "id"},
            ReturnValues="ALL_OLD",
        )
    except ClientError as e:
        if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
            return _response(404, {"error": "Product not found"})
        raise

    product = response["Attributes"]
    print(f"Product {product_id} deleted")

    _send_product_event(product, PRODUCT_DELETED, request_id)
    return _response(200, product)


def _send_product_event(product: Dict[str, Any], event_type: str, request_id: str) -> None:
    """Invoke the product events function asynchronously."""
    product_event = {
        "requestId": request_id,
        "eventType": event_type,
        "productId": product["id"],
        "productCode": product.get("code"),
        "productPrice": product.get("price"),
    }
    _get_lambda_client().invoke(
        FunctionName=product_events_function_name,
        InvocationType="Event",
        Payload=json.dumps(product_event, default=_json_default),
    )
    print(f"Sent {event_type} for product {product['id']}")
