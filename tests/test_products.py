"""Unit tests for the products function and the product events recorder."""

import json
import os
from decimal import Decimal
from unittest.mock import patch, MagicMock

import pytest
from botocore.exceptions import ClientError


# Set environment variables before importing the handlers
os.environ["PRODUCTS_DDB"] = "test-products-table"
os.environ["PRODUCT_EVENTS_FUNCTION_NAME"] = "product-events"
os.environ["EVENTS_DDB"] = "test-events-table"
os.environ["EVENT_TTL_SECONDS"] = "300"

# Import handlers after setting environment variables
from lambdas import product_events, products


PRODUCT = {"id": "p1", "productName": "Product 1", "code": "COD1", "price": Decimal("10.5")}

CONDITION_FAILED = ClientError(
    {"Error": {"Code": "ConditionalCheckFailedException", "Message": "Condition failed"}},
    "DeleteItem",
)


@pytest.fixture
def mock_products_table():
    """Create a mock products table."""
    with patch("lambdas.products._get_table") as mock_get_table:
        mock_table = MagicMock()
        mock_get_table.return_value = mock_table
        yield mock_table


@pytest.fixture
def mock_lambda_client():
    """Create a mock Lambda client."""
    with patch("lambdas.products._get_lambda_client") as mock_get_client:
        mock_client = MagicMock()
        mock_get_client.return_value = mock_client
        yield mock_client


@pytest.fixture
def mock_events_table():
    """Create a mock events table."""
    with patch("lambdas.product_events._get_table") as mock_get_table:
        mock_table = MagicMock()
        mock_get_table.return_value = mock_table
        yield mock_table


def _request(method, product_id=None, body=None):
    event = {"httpMethod": method, "requestContext": {"requestId": "req-1"}}
    if product_id:
        event["pathParameters"] = {"id": product_id}
    if body is not None:
        event["body"] = json.dumps(body)
    return event


def _sent_product_event(mock_lambda_client):
    call_kwargs = mock_lambda_client.invoke.call_args.kwargs
    assert call_kwargs["FunctionName"] == "product-events"
    assert call_kwargs["InvocationType"] == "Event"
    return json.loads(call_kwargs["Payload"])


def test_create_product(mock_products_table, mock_lambda_client):
    """Test a product is stored and a PRODUCT_CREATED event sent."""
    # Arrange
    body = {"productName": "Product 1", "code": "COD1", "price": 10.5, "model": "M1"}

    # Act
    response = products.handler(_request("POST", body=body), None)

    # Assert
    assert response["statusCode"] == 201
    item = mock_products_table.put_item.call_args.kwargs["Item"]
    assert item["code"] == "COD1"
    assert item["price"] == Decimal("10.5")
    assert json.loads(response["body"])["price"] == 10.5

    assert _sent_product_event(mock_lambda_client) == {
        "requestId": "req-1",
        "eventType": "PRODUCT_CREATED",
        "productId": item["id"],
        "productCode": "COD1",
        "productPrice": 10.5,
    }


@pytest.mark.parametrize("body", [{"code": "COD1"}, {"productName": "Product 1"}])
def test_create_product_missing_fields(mock_products_table, mock_lambda_client, body):
    response = products.handler(_request("POST", body=body), None)

    assert response["statusCode"] == 400
    mock_products_table.put_item.assert_not_called()
    mock_lambda_client.invoke.assert_not_called()


def test_create_product_invalid_json(mock_products_table):
    event = _request("POST")
    event["body"] = "{not json"

    response = products.handler(event, None)

    assert response["statusCode"] == 400


def test_list_products(mock_products_table):
    mock_products_table.scan.return_value = {"Items": [PRODUCT]}

    response = products.handler(_request("GET"), None)

    assert response["statusCode"] == 200
    assert json.loads(response["body"]) == [
        {"id": "p1", "productName": "Product 1", "code": "COD1", "price": 10.5}
    ]


def test_get_product(mock_products_table):
    mock_products_table.get_item.return_value = {"Item": PRODUCT}

    response = products.handler(_request("GET", "p1"), None)

    assert response["statusCode"] == 200
    mock_products_table.get_item.assert_called_once_with(Key={"id": "p1"})


def test_get_product_not_found(mock_products_table):
    mock_products_table.get_item.return_value = {}

    response = products.handler(_request("GET", "nope"), None)

    assert response["statusCode"] == 404


def test_update_product(mock_products_table, mock_lambda_client):
    """Test an existing product is updated and a PRODUCT_UPDATED event sent."""
    # Arrange
    updated = dict(PRODUCT, price=Decimal("12"))
    mock_products_table.update_item.return_value = {"Attributes": updated}

    # Act
    response = products.handler(
        _request("PUT", "p1", {"productName": "Product 1", "code": "COD1", "price": 12}),
        None,
    )

    # Assert
    assert response["statusCode"] == 200
    call_kwargs = mock_products_table.update_item.call_args.kwargs
    assert call_kwargs["Key"] == {"id": "p1"}
    assert call_kwargs["ConditionExpression"] == "attribute_exists(#id)"
    assert call_kwargs["ExpressionAttributeValues"][":price"] == 12

    product_event = _sent_product_event(mock_lambda_client)
    assert product_event["eventType"] == "PRODUCT_UPDATED"
    assert product_event["productPrice"] == 12


def test_update_unknown_product(mock_products_table, mock_lambda_client):
    mock_products_table.update_item.side_effect = CONDITION_FAILED

    response = products.handler(
        _request("PUT", "nope", {"productName": "Product 1", "code": "COD1"}), None
    )

    assert response["statusCode"] == 404
    mock_lambda_client.invoke.assert_not_called()


def test_delete_product(mock_products_table, mock_lambda_client):
    mock_products_table.delete_item.return_value = {"Attributes": PRODUCT}

    response = products.handler(_request("DELETE", "p1"), None)

    assert response["statusCode"] == 200
    assert _sent_product_event(mock_lambda_client)["eventType"] == "PRODUCT_DELETED"


def test_delete_unknown_product(mock_products_table, mock_lambda_client):
    mock_products_table.delete_item.side_effect = CONDITION_FAILED

    response = products.handler(_request("DELETE", "nope"), None)

    assert response["statusCode"] == 404
    mock_lambda_client.invoke.assert_not_called()


def test_products_handler_internal_error(mock_products_table):
    """Test unexpected DynamoDB errors map to 500."""
    mock_products_table.scan.side_effect = ClientError(
        {"Error": {"Code": "InternalServerError", "Message": "Internal error"}}, "Scan"
    )

    response = products.handler(_request("GET"), None)

    assert response["statusCode"] == 500


@pytest.mark.parametrize(
    "method, product_id", [("POST", "p1"), ("PUT", None), ("DELETE", None), ("PATCH", "p1")]
)
def test_unsupported_route(mock_products_table, method, product_id):
    response = products.handler(_request(method, product_id, {}), None)

    assert response["statusCode"] == 400


def test_product_event_is_recorded(mock_events_table):
    """Test a product event is stored under its product code with a TTL."""
    # Arrange
    event = {
        "requestId": "req-1",
        "eventType": "PRODUCT_CREATED",
        "productId": "p1",
        "productCode": "COD1",
        "productPrice": 10.5,
    }

    # Act
    with patch("lambdas.product_events.time.time", return_value=1700000000.0):
        product_events.handler(event, None)

    # Assert
    item = mock_events_table.put_item.call_args.kwargs["Item"]
    assert item["pk"] == "#product_COD1"
    assert item["sk"] == "PRODUCT_CREATED#1700000000000"
    assert item["ttl"] == 1700000300
    assert item["requestId"] == "req-1"
    assert item["info"] == {"productId": "p1", "price": Decimal("10.5")}


def test_product_event_failure_propagates(mock_events_table):
    """Test a write failure is raised so the asynchronous invocation is retried."""
    mock_events_table.put_item.side_effect = Exception("DynamoDB error")

    with pytest.raises(Exception, match="DynamoDB error"):
        product_events.handler(
            {"eventType": "PRODUCT_DELETED", "productId": "p1", "productCode": "COD1"}, None
        )
