from datetime import date

import pytest

from doula_crm.domain.payments.lifecycle import (
    InvalidPaymentTransition,
    can_transition,
    ensure_transition,
    is_payment_overdue,
    parse_status,
)


@pytest.mark.parametrize(
    "current, target",
    [
        ("pending", "succeeded"),
        ("pending", "failed"),
        ("pending", "canceled"),
        ("pending", "pending"),
        ("failed", "pending"),
        ("failed", "failed"),
        ("failed", "succeeded"),
        ("failed", "canceled"),
        ("succeeded", "refunded"),
    ],
)
def test_allowed_transitions(current, target):
    assert can_transition(current, target)


@pytest.mark.parametrize(
    "current, target",
    [
        ("succeeded", "pending"),
        ("succeeded", "failed"),
        ("refunded", "succeeded"),
        ("canceled", "pending"),
        ("pending", "refunded"),
    ],
)
def test_rejected_transitions(current, target):
    assert not can_transition(current, target)
    with pytest.raises(InvalidPaymentTransition) as exc_info:
        ensure_transition(current, target)
    assert exc_info.value.current == current
    assert exc_info.value.target == target


def test_parse_status_rejects_unknown_values():
    with pytest.raises(ValueError, match="Invalid payment status: paid"):
        parse_status("paid")


@pytest.mark.parametrize(
    "status, due, expected",
    [
        ("pending", date(2024, 1, 9), True),
        ("failed", date(2024, 1, 9), True),
        ("pending", date(2024, 1, 10), False),
        ("pending", date(2024, 1, 11), False),
        ("succeeded", date(2024, 1, 1), False),
        ("refunded", date(2024, 1, 1), False),
        ("canceled", date(2024, 1, 1), False),
    ],
)
def test_overdue_predicate(status, due, expected):
    assert is_payment_overdue(status, due, today=date(2024, 1, 10)) is expected
