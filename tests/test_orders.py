"""Unit tests for the orders Lambda function."""

import json
import os
from unittest.mock import patch, MagicMock

import pytest
from botocore.exceptions import ClientError


# Set environment variables before importing the handler
os.environ["PRODUCTS_DDB"] = "test-products-table"
os.environ["ORDERS_DDB"] = "test-orders-table"
os.environ["ORDER_EVENTS_TOPIC_ARN"] = "arn:aws:sns:us-east-1:123456789012:order-events"
os.environ["AUDIT_BUS_NAME"] = "AuditEventBus"

# Import handler after setting environment variables
from lambdas.orders import handler


PRODUCTS = {
    "p1": {"id": "p1", "code": "COD1", "price": 10},
    "p2": {"id": "p2", "code": "COD2", "price": 20},
}


@pytest.fixture
def mock_products_table():
    """Create a mock products table holding PRODUCTS."""
    with patch("lambdas.orders._get_products_table") as mock_get_table:
        mock_table = MagicMock()
        mock_table.get_item.side_effect = lambda Key: (
            {"Item": PRODUCTS[Key["id"]]} if Key["id"] in PRODUCTS else {}
        )
        mock_get_table.return_value = mock_table
        yield mock_table


@pytest.fixture
def mock_orders_table():
    """Create a mock orders table."""
    with patch("lambdas.orders._get_orders_table") as mock_get_table:
        mock_table = MagicMock()
        mock_get_table.return_value = mock_table
        yield mock_table


@pytest.fixture
def mock_sns_client():
    """Create a mock SNS client."""
    with patch("lambdas.orders._get_sns_client") as mock_get_client:
        mock_client = MagicMock()
        mock_get_client.return_value = mock_client
        yield mock_client


@pytest.fixture
def mock_events_client():
    """Create a mock EventBridge client."""
    with patch("lambdas.orders._get_events_client") as mock_get_client:
        mock_client = MagicMock()
        mock_get_client.return_value = mock_client
        yield mock_client


def _post(body):
    return {
        "httpMethod": "POST",
        "body": json.dumps(body),
        "requestContext": {"requestId": "req-1"},
    }


def test_create_order_success(
    mock_products_table, mock_orders_table, mock_sns_client, mock_events_client
):
    """Test an order with known products is stored and published."""
    # Arrange
    event = _post({"email": "a@example.com", "productIds": ["p1", "p2"], "payment": "CASH"})

    # Act
    response = handler(event, None)

    # Assert
    assert response["statusCode"] == 201
    body = json.loads(response["body"])
    assert body["email"] == "a@example.com"
    assert body["billing"] == {"payment": "CASH"}
    assert [p["code"] for p in body["products"]] == ["COD1", "COD2"]

    item = mock_orders_table.put_item.call_args.kwargs["Item"]
    assert item["pk"] == "a@example.com"
    assert item["sk"] == body["id"]

    publish = mock_sns_client.publish.call_args.kwargs
    assert publish["TopicArn"] == os.environ["ORDER_EVENTS_TOPIC_ARN"]
    assert publish["MessageAttributes"]["eventType"] == {
        "DataType": "String",
        "StringValue": "ORDER_CREATED",
    }
    envelope = json.loads(publish["Message"])
    assert envelope["eventType"] == "ORDER_CREATED"
    data = json.loads(envelope["data"])
    assert data["orderId"] == body["id"]
    assert data["productCodes"] == ["COD1", "COD2"]
    assert data["requestId"] == "req-1"

    mock_events_client.put_events.assert_not_called()


def test_create_order_unknown_product(
    mock_products_table, mock_orders_table, mock_sns_client, mock_events_client, capsys
):
    """Test an unknown product logs the metric line and emits an audit event."""
    # Arrange
    event = _post({"email": "a@example.com", "productIds": ["p1", "missing"], "payment": "PIX"})

    # Act
    response = handler(event, None)

    # Assert
    assert response["statusCode"] == 404
    assert "Some product was not found" in capsys.readouterr().out

    (entry,) = mock_events_client.put_events.call_args.kwargs["Entries"]
    assert entry["Source"] == "app.order"
    assert entry["DetailType"] == "order"
    assert entry["EventBusName"] == "AuditEventBus"
    detail = json.loads(entry["Detail"])
    assert detail["reason"] == "PRODUCT_NOT_FOUND"
    assert detail["requestId"] == "req-1"
    assert detail["orderRequest"]["productIds"] == ["p1", "missing"]

    mock_orders_table.put_item.assert_not_called()
    mock_sns_client.publish.assert_not_called()


def test_create_order_duplicate_product_ids(
    mock_products_table, mock_orders_table, mock_sns_client, mock_events_client
):
    """Test repeated product ids are looked up once and do not count as missing."""
    event = _post({"email": "a@example.com", "productIds": ["p1", "p1"], "payment": "CASH"})

    response = handler(event, None)

    assert response["statusCode"] == 201
    assert mock_products_table.get_item.call_count == 1


@pytest.mark.parametrize(
    "body",
    [
        {"productIds": ["p1"], "payment": "CASH"},
        {"email": "a@example.com", "productIds": [], "payment": "CASH"},
        {"email": "a@example.com", "productIds": ["p1"]},
    ],
)
def test_create_order_missing_fields(mock_products_table, mock_orders_table, body):
    response = handler(_post(body), None)

    assert response["statusCode"] == 400
    mock_orders_table.put_item.assert_not_called()


def test_create_order_invalid_json(mock_orders_table):
    """Test a body that is not JSON is rejected."""
    response = handler({"httpMethod": "POST", "body": "{not json"}, None)

    assert response["statusCode"] == 400
    body = json.loads(response["body"])
    assert body["error"] == "Invalid JSON in request body"


def test_get_single_order(mock_orders_table):
    # Arrange
    mock_orders_table.get_item.return_value = {
        "Item": {
            "pk": "a@example.com",
            "sk": "order-1",
            "createdAt": "2024-01-01T00:00:00+00:00",
            "products": [{"id": "p1", "code": "COD1"}],
            "billing": {"payment": "CASH"},
        }
    }
    event = {
        "httpMethod": "GET",
        "queryStringParameters": {"email": "a@example.com", "orderId": "order-1"},
    }

    # Act
    response = handler(event, None)

    # Assert
    assert response["statusCode"] == 200
    assert json.loads(response["body"])["id"] == "order-1"
    mock_orders_table.get_item.assert_called_once_with(
        Key={"pk": "a@example.com", "sk": "order-1"}
    )


def test_get_single_order_not_found(mock_orders_table):
    mock_orders_table.get_item.return_value = {}
    event = {
        "httpMethod": "GET",
        "queryStringParameters": {"email": "a@example.com", "orderId": "nope"},
    }

    response = handler(event, None)

    assert response["statusCode"] == 404


def test_get_orders_by_email(mock_orders_table):
    mock_orders_table.query.return_value = {
        "Items": [{"pk": "a@example.com", "sk": "o1"}, {"pk": "a@example.com", "sk": "o2"}]
    }
    event = {"httpMethod": "GET", "queryStringParameters": {"email": "a@example.com"}}

    response = handler(event, None)

    assert [o["id"] for o in json.loads(response["body"])] == ["o1", "o2"]
    assert mock_orders_table.query.call_args.kwargs["ExpressionAttributeValues"] == {
        ":email": "a@example.com"
    }


def test_get_all_orders(mock_orders_table):
    mock_orders_table.scan.return_value = {"Items": [{"pk": "b@example.com", "sk": "o3"}]}

    response = handler({"httpMethod": "GET", "queryStringParameters": None}, None)

    assert response["statusCode"] == 200
    assert json.loads(response["body"])[0]["email"] == "b@example.com"


def test_delete_order(mock_orders_table, mock_sns_client):
    """Test a deleted order publishes ORDER_DELETED."""
    # Arrange
    mock_orders_table.delete_item.return_value = {
        "Attributes": {
            "pk": "a@example.com",
            "sk": "order-1",
            "products": [{"id": "p1", "code": "COD1"}],
        }
    }
    event = {
        "httpMethod": "DELETE",
        "queryStringParameters": {"email": "a@example.com", "orderId": "order-1"},
    }

    # Act
    response = handler(event, None)

    # Assert
    assert response["statusCode"] == 200
    call_kwargs = mock_orders_table.delete_item.call_args.kwargs
    assert call_kwargs["ConditionExpression"] == "attribute_exists(pk)"
    assert call_kwargs["ReturnValues"] == "ALL_OLD"
    attributes = mock_sns_client.publish.call_args.kwargs["MessageAttributes"]
    assert attributes["eventType"]["StringValue"] == "ORDER_DELETED"


def test_delete_order_not_found(mock_orders_table, mock_sns_client):
    mock_orders_table.delete_item.side_effect = ClientError(
        {"Error": {"Code": "ConditionalCheckFailedException", "Message": "Condition failed"}},
        "DeleteItem",
    )
    event = {
        "httpMethod": "DELETE",
        "queryStringParameters": {"email": "a@example.com", "orderId": "nope"},
    }

    response = handler(event, None)

    assert response["statusCode"] == 404
    mock_sns_client.publish.assert_not_called()


def test_dynamodb_error_returns_500(mock_orders_table):
    mock_orders_table.delete_item.side_effect = ClientError(
        {"Error": {"Code": "InternalServerError", "Message": "Internal error"}},
        "DeleteItem",
    )
    event = {
        "httpMethod": "DELETE",
        "queryStringParameters": {"email": "a@example.com", "orderId": "order-1"},
    }

    response = handler(event, None)

    assert response["statusCode"] == 500


def test_unsupported_method():
    response = handler({"httpMethod": "PUT"}, None)

    assert response["statusCode"] == 400
