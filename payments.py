"""Payment initiation stub.

No gateway is wired up yet; initiation only records what would be sent.
Runs as a FastAPI background task so order creation never waits on it.
"""
from typing import Any, Dict

import structlog

from schemas import PaymentMethod

logger = structlog.get_logger(__name__)


def initiate_payment(order: Dict[str, Any]) -> None:
    method = order.get("payment_method")
    amount = order.get("total_amount")
    if method == PaymentMethod.MPESA.value:
        logger.info("payment_initiated", channel="mpesa_stk_push", order_id=order.get("id"),
                    msisdn=order.get("mpesa_number"), amount=amount)
    elif method == PaymentMethod.CARD.value:
        logger.info("payment_initiated", channel="card", order_id=order.get("id"), amount=amount)
    else:
        logger.debug("payment_on_delivery", order_id=order.get("id"), amount=amount)
