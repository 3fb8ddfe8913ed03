"""Unit tests for the order emails Lambda function."""

import json
import os
from unittest.mock import patch, MagicMock

import pytest
from botocore.exceptions import ClientError


# Set environment variables before importing the handler
os.environ["SENDER_EMAIL"] = "no-reply@example.com"

# Import handler after setting environment variables
from lambdas.order_emails import handler


@pytest.fixture
def mock_ses_client():
    """Create a mock SES client."""
    with patch("lambdas.order_emails._get_ses_client") as mock_get_client:
        mock_client = MagicMock()
        mock_get_client.return_value = mock_client
        yield mock_client


def _sqs_record(message_id, event_type="ORDER_CREATED", email="a@example.com"):
    data = {"email": email, "orderId": f"order-{message_id}"}
    notification = {
        "Type": "Notification",
        "Message": json.dumps({"eventType": event_type, "data": json.dumps(data)}),
    }
    return {"messageId": message_id, "body": json.dumps(notification)}


def test_sends_one_email_per_message(mock_ses_client):
    """Test each queued order event sends an email to its customer."""
    # Arrange
    event = {"Records": [_sqs_record("m1"), _sqs_record("m2", "ORDER_DELETED")]}

    # Act
    result = handler(event, None)

    # Assert
    assert result == {"batchItemFailures": []}
    assert mock_ses_client.send_email.call_count == 2
    first = mock_ses_client.send_email.call_args_list[0].kwargs
    assert first["Source"] == "no-reply@example.com"
    assert first["Destination"] == {"ToAddresses": ["a@example.com"]}
    assert first["Message"]["Subject"]["Data"] == "Your order was received"
    second = mock_ses_client.send_email.call_args_list[1].kwargs
    assert second["Message"]["Subject"]["Data"] == "Your order was cancelled"


def test_partial_batch_failure(mock_ses_client):
    """Test only the failed message is reported for redelivery."""
    # Arrange
    mock_ses_client.send_email.side_effect = [
        {},
        ClientError(
            {"Error": {"Code": "MessageRejected", "Message": "Email address is not verified"}},
            "SendEmail",
        ),
        {},
    ]
    event = {"Records": [_sqs_record("m1"), _sqs_record("m2"), _sqs_record("m3")]}

    # Act
    result = handler(event, None)

    # Assert
    assert result == {"batchItemFailures": [{"itemIdentifier": "m2"}]}


def test_malformed_body_is_reported(mock_ses_client):
    event = {"Records": [{"messageId": "m1", "body": "not json"}]}

    result = handler(event, None)

    assert result == {"batchItemFailures": [{"itemIdentifier": "m1"}]}
    mock_ses_client.send_email.assert_not_called()


def test_empty_batch(mock_ses_client):
    assert handler({"Records": []}, None) == {"batchItemFailures": []}
