"""Payments domain schemas - Pydantic models for validation"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .schedule import PAYMENT_FREQUENCIES

PAYMENT_TYPES = ("deposit", "installment", "final")
REMINDER_TYPES = ("due_soon", "overdue", "final_notice")


class CreatePaymentScheduleRequest(BaseModel):
    """Schema for creating a contract's payment schedule"""

    schedule_name: Optional[str] = None
    total_amount: Decimal = Field(gt=0)
    deposit_amount: Decimal = Field(default=Decimal("0"), ge=0)
    number_of_installments: int = Field(default=0, ge=0)
    payment_frequency: str = "one-time"
    start_date: Optional[date] = None

    @field_validator("payment_frequency")
    @classmethod
    def validate_frequency(cls, v: str) -> str:
        if v not in PAYMENT_FREQUENCIES:
            raise ValueError(f"payment_frequency must be one of: {', '.join(PAYMENT_FREQUENCIES)}")
        return v


class UpdatePaymentStatusRequest(BaseModel):
    """Status update body. status stays optional so a missing value gets a plain 400."""

    status: Optional[str] = None
    stripe_payment_intent_id: Optional[str] = None
    notes: Optional[str] = None


class ManualPaymentRequest(BaseModel):
    amount: Decimal = Field(gt=0)
    payment_type: str = "installment"
    due_date: Optional[date] = None
    notes: Optional[str] = None

    @field_validator("payment_type")
    @classmethod
    def validate_payment_type(cls, v: str) -> str:
        if v not in PAYMENT_TYPES:
            raise ValueError(f"payment_type must be one of: {', '.join(PAYMENT_TYPES)}")
        return v


class CreateReminderRequest(BaseModel):
    reminder_type: str
    scheduled_for: datetime

    @field_validator("reminder_type")
    @classmethod
    def validate_reminder_type(cls, v: str) -> str:
        if v not in REMINDER_TYPES:
            raise ValueError(f"reminder_type must be one of: {', '.join(REMINDER_TYPES)}")
        return v


class MarkReminderSentRequest(BaseModel):
    email_sent: bool = True
    sms_sent: bool = False


class RecordPaymentRequest(BaseModel):
    payment_intent_id: Optional[str] = None


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    contract_id: int
    payment_schedule_id: Optional[int] = None
    payment_type: str
    amount: float
    due_date: date
    payment_number: int
    total_payments: int
    status: str
    is_overdue: bool
    stripe_payment_intent_id: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None


class PaymentScheduleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    contract_id: int
    schedule_name: str
    total_amount: float
    deposit_amount: float
    installment_amount: Optional[float] = None
    number_of_installments: int
    payment_frequency: str
    start_date: date
    end_date: Optional[date] = None
    status: str
    created_at: Optional[datetime] = None


class PaymentSummary(BaseModel):
    total_amount: float = 0
    total_paid: float = 0
    total_due: float = 0
    overdue_amount: float = 0
    next_payment_due: Optional[date] = None
    next_payment_amount: Optional[float] = None
    payment_count: int = 0
    overdue_count: int = 0


class PaymentListItem(BaseModel):
    """Payment joined to its contract and client, used by overdue/status/date-range listings"""

    payment_id: int
    contract_id: int
    client_name: str
    client_email: Optional[str] = None
    payment_type: str
    amount: float
    due_date: date
    status: str
    is_overdue: bool
    days_overdue: int = 0
    payment_schedule_name: Optional[str] = None


class PaymentDashboardRow(BaseModel):
    contract_id: int
    contract_title: str
    contract_status: str
    client_name: str
    client_email: Optional[str] = None
    total_amount: float
    total_paid: float
    total_due: float
    overdue_amount: float
    overdue_count: int
    payment_count: int
    next_payment_due: Optional[date] = None
    next_payment_amount: Optional[float] = None


class PaymentReminderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    payment_id: int
    reminder_type: str
    scheduled_for: datetime
    status: str
    sent_at: Optional[datetime] = None
    email_sent: bool
    sms_sent: bool
