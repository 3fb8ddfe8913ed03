"""Remediation targets for the audit event bus rules."""

import json
from typing import Any, Dict


def orders_errors_handler(event: Dict[str, Any], context: Any) -> None:
    """Invalid order (reason PRODUCT_NOT_FOUND) routed by NonValidOrderRule."""
    detail = event.get("detail", {})
    print(f"Non valid order {event.get('id')}: {json.dumps(detail, default=str)}")


def invoice_errors_handler(event: Dict[str, Any], context: Any) -> None:
    """Invalid invoice (FAIL_NO_INVOICE_NUMBER) routed by NonValidInvoiceRule."""
    detail = event.get("detail", {})
    print(f"Non valid invoice {event.get('id')}: {json.dumps(detail, default=str)}")
