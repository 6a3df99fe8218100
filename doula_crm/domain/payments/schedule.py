"""
Installment plan arithmetic

Pure functions that turn a contract's total, deposit and installment preferences into
the concrete list of payments to persist. Nothing here touches the database.

Rules:
- amounts are rounded to cents; every installment gets (total - deposit) / N rounded
  down and the last installment absorbs the remainder, so the plan always sums to total
- the deposit is due on the start date
- with a deposit, installment k (1-based) is due start + k * step; without one the
  first installment is due on the start date
- with no installments the balance is a single "final" payment due on the start date
"""

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

from dateutil.relativedelta import relativedelta

CENT = Decimal("0.01")

PAYMENT_FREQUENCIES = ("one-time", "weekly", "bi-weekly", "monthly", "quarterly")

_FREQUENCY_STEPS = {
    "one-time": relativedelta(),
    "weekly": relativedelta(weeks=1),
    "bi-weekly": relativedelta(weeks=2),
    "monthly": relativedelta(months=1),
    "quarterly": relativedelta(months=3),
}

Amount = Union[Decimal, float, int, str]


class PaymentScheduleError(ValueError):
    """Raised when schedule parameters cannot produce a valid plan"""


@dataclass(frozen=True)
class PlannedPayment:
    payment_type: str  # deposit, installment, final
    amount: Decimal
    due_date: date
    payment_number: int
    total_payments: int


def to_money(value: Amount) -> Decimal:
    """Coerce an amount to a Decimal rounded to cents"""
    if isinstance(value, float):
        value = repr(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(value: Amount) -> int:
    return int(to_money(value) * 100)


def installment_due_date(start_date: date, frequency: str, offset: int) -> date:
    """Due date `offset` periods after start_date. Month arithmetic clamps to the end of month."""
    if frequency not in _FREQUENCY_STEPS:
        raise PaymentScheduleError(f"Unsupported payment frequency: {frequency}")
    step = _FREQUENCY_STEPS[frequency]
    # Multiply from the start date rather than stepping, so Jan 31 + 2 months is Mar 31
    return start_date + relativedelta(
        years=step.years * offset, months=step.months * offset, days=step.days * offset
    )


def split_installments(balance: Decimal, count: int) -> list[Decimal]:
    """Split balance into count cent-exact parts, the last one taking the remainder"""
    if count <= 0:
        return []
    balance_cents = to_cents(balance)
    base_cents = balance_cents // count
    parts = [base_cents] * (count - 1)
    parts.append(balance_cents - base_cents * (count - 1))
    return [Decimal(cents) / 100 for cents in parts]


def build_installment_plan(
    total_amount: Amount,
    deposit_amount: Amount = 0,
    number_of_installments: int = 0,
    payment_frequency: str = "one-time",
    start_date: Optional[date] = None,
) -> list[PlannedPayment]:
    """Compute the payments for a schedule, ordered by payment number"""
    total = to_money(total_amount)
    deposit = to_money(deposit_amount or 0)
    installments = number_of_installments or 0
    start = start_date or date.today()

    if total <= 0:
        raise PaymentScheduleError("Total amount must be greater than zero")
    if deposit < 0:
        raise PaymentScheduleError("Deposit amount cannot be negative")
    if deposit > total:
        raise PaymentScheduleError("Deposit amount cannot exceed total amount")
    if installments < 0:
        raise PaymentScheduleError("Number of installments cannot be negative")
    if payment_frequency not in _FREQUENCY_STEPS:
        raise PaymentScheduleError(f"Unsupported payment frequency: {payment_frequency}")

    balance = total - deposit
    rows: list[tuple[str, Decimal, date]] = []

    if deposit > 0:
        rows.append(("deposit", deposit, start))

    if installments == 0:
        if balance > 0:
            rows.append(("final", balance, start))
    else:
        first_offset = 1 if deposit > 0 else 0
        for index, amount in enumerate(split_installments(balance, installments)):
            due = installment_due_date(start, payment_frequency, first_offset + index)
            rows.append(("installment", amount, due))

    total_payments = len(rows)
    return [
        PlannedPayment(
            payment_type=payment_type,
            amount=amount,
            due_date=due_date,
            payment_number=number,
            total_payments=total_payments,
        )
        for number, (payment_type, amount, due_date) in enumerate(rows, start=1)
    ]


def base_installment_amount(plan: list[PlannedPayment]) -> Optional[Decimal]:
    for payment in plan:
        if payment.payment_type == "installment":
            return payment.amount
    return None
