"""Simulated payment processor. No funds move; the outcome is a coin flip."""

import random
import time
from typing import Optional

import structlog

from config import settings
from database import utcnow
from errors import PaymentDeclined, ValidationFailed
from schemas import PaymentMethod, PaymentRequest, PaymentStatus

logger = structlog.get_logger(__name__)


def process_payment(payment: PaymentRequest, rng: Optional[random.Random] = None, success_rate: Optional[float] = None) -> dict:
    rng = rng or random
    if success_rate is None:
        success_rate = settings.PAYMENT_SUCCESS_RATE
    if payment.method == PaymentMethod.cod.value:
        raise ValidationFailed([{"field": "method", "message": "Invalid payment method"}])

    if rng.random() >= success_rate:
        logger.info("payment_declined", amount=payment.amount, method=payment.method)
        raise PaymentDeclined()

    transaction_id = f"TXN{int(time.time() * 1000)}{rng.randint(0, 999)}"
    logger.info("payment_processed", transaction_id=transaction_id, amount=payment.amount)
    return {
        "transaction_id": transaction_id,
        "amount": payment.amount,
        "method": payment.method,
        "status": PaymentStatus.completed.value,
        "processed_at": utcnow(),
    }
