"""Lambda handler receiving created orders for payment."""

import json
from typing import Any, Dict


def handler(event: Dict[str, Any], context: Any) -> None:
    """Log each ORDER_CREATED notification (payment capture is external)."""
    for record in event.get("Records", []):
        envelope = json.loads(record["Sns"]["Message"])
        order_event = json.loads(envelope["data"])
        print(
            f"Payment requested for order {order_event['orderId']} "
            f"({order_event.get('billing', {}).get('payment')})"
        )
