"""Payment status lifecycle - statuses, allowed transitions and the overdue predicate"""

from datetime import date
from enum import Enum
from typing import Optional


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELED = "canceled"


class InvalidPaymentTransition(Exception):
    """Raised when a payment is asked to move to a status its current status does not allow"""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot change payment status from {current} to {target}")


# succeeded → refunded is the only way out of a terminal state.
# A failed payment can be retried on the same intent, so it may still succeed or be canceled.
ALLOWED_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset(
        {PaymentStatus.PENDING, PaymentStatus.SUCCEEDED, PaymentStatus.FAILED, PaymentStatus.CANCELED}
    ),
    PaymentStatus.FAILED: frozenset(
        {PaymentStatus.FAILED, PaymentStatus.PENDING, PaymentStatus.SUCCEEDED, PaymentStatus.CANCELED}
    ),
    PaymentStatus.SUCCEEDED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.REFUNDED: frozenset(),
    PaymentStatus.CANCELED: frozenset(),
}

# Statuses that still expect money to come in
OUTSTANDING_STATUSES = frozenset({PaymentStatus.PENDING, PaymentStatus.FAILED})


def parse_status(value: str) -> PaymentStatus:
    try:
        return PaymentStatus(value)
    except ValueError as e:
        raise ValueError(f"Invalid payment status: {value}") from e


def can_transition(current: str, target: str) -> bool:
    return PaymentStatus(target) in ALLOWED_TRANSITIONS[PaymentStatus(current)]


def ensure_transition(current: str, target: str) -> None:
    if not can_transition(current, target):
        raise InvalidPaymentTransition(current, target)


def is_payment_overdue(status: str, due_date: date, today: Optional[date] = None) -> bool:
    """A payment is overdue while money is still outstanding and its due date has passed"""
    today = today or date.today()
    return PaymentStatus(status) in OUTSTANDING_STATUSES and due_date < today
