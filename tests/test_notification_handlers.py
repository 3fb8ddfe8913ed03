"""Unit tests for the payments, audit remediation and connection handlers."""

import json

from lambdas import audit_errors, invoice_connection, payments


def test_payments_logs_each_created_order(capsys):
    data = {"orderId": "order-1", "billing": {"payment": "PIX"}}
    event = {
        "Records": [
            {"Sns": {"Message": json.dumps({"eventType": "ORDER_CREATED", "data": json.dumps(data)})}}
        ]
    }

    payments.handler(event, None)

    assert "Payment requested for order order-1 (PIX)" in capsys.readouterr().out


def test_orders_errors_handler_logs_detail(capsys):
    event = {
        "id": "evt-1",
        "source": "app.order",
        "detail-type": "order",
        "detail": {"reason": "PRODUCT_NOT_FOUND", "requestId": "req-1"},
    }

    audit_errors.orders_errors_handler(event, None)

    out = capsys.readouterr().out
    assert "Non valid order evt-1" in out
    assert "PRODUCT_NOT_FOUND" in out


def test_invoice_errors_handler_logs_detail(capsys):
    event = {
        "id": "evt-2",
        "detail": {"errorDetail": "FAIL_NO_INVOICE_NUMBER", "info": {"customerName": "c1"}},
    }

    audit_errors.invoice_errors_handler(event, None)

    assert "FAIL_NO_INVOICE_NUMBER" in capsys.readouterr().out


def test_connect_and_disconnect_accept_the_connection():
    event = {"requestContext": {"connectionId": "conn-1"}}

    assert invoice_connection.connect_handler(event, None) == {"statusCode": 200, "body": "OK"}
    assert invoice_connection.disconnect_handler(event, None) == {"statusCode": 200, "body": "OK"}
