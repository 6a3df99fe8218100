"""
Contract Payment Models
Payment schedules, individual contract payments, reminders and the Stripe webhook ledger
"""
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class PaymentSchedule(Base):
    """Installment plan for one contract"""
    __tablename__ = "payment_schedules"

    id = Column(Integer, primary_key=True, index=True)
    contract_id = Column(Integer, ForeignKey("contracts.id"), nullable=False, index=True)
    schedule_name = Column(String(255), nullable=False)
    total_amount = Column(Numeric(10, 2), nullable=False)
    deposit_amount = Column(Numeric(10, 2), nullable=False, default=0)
    installment_amount = Column(Numeric(10, 2), nullable=True)
    number_of_installments = Column(Integer, nullable=False, default=0)
    payment_frequency = Column(String(20), nullable=False, default="one-time")
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    status = Column(String(20), nullable=False, default="active")  # active, completed, cancelled
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    contract = relationship("Contract", back_populates="payment_schedules")
    payments = relationship(
        "ContractPayment", back_populates="payment_schedule", order_by="ContractPayment.payment_number"
    )


class ContractPayment(Base):
    """One due or paid installment of a contract"""
    __tablename__ = "contract_payments"

    id = Column(Integer, primary_key=True, index=True)
    contract_id = Column(Integer, ForeignKey("contracts.id"), nullable=False, index=True)
    payment_schedule_id = Column(Integer, ForeignKey("payment_schedules.id"), nullable=True)

    payment_type = Column(String(20), nullable=False)  # deposit, installment, final
    amount = Column(Numeric(10, 2), nullable=False)
    due_date = Column(Date, nullable=False, index=True)
    payment_number = Column(Integer, nullable=False, default=1)
    total_payments = Column(Integer, nullable=False, default=1)

    status = Column(String(20), nullable=False, default="pending", index=True)
    is_overdue = Column(Boolean, nullable=False, default=False)

    stripe_payment_intent_id = Column(String(255), nullable=True, index=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
    completed_at = Column(DateTime, nullable=True)
    failed_at = Column(DateTime, nullable=True)
    refunded_at = Column(DateTime, nullable=True)

    contract = relationship("Contract", back_populates="payments")
    payment_schedule = relationship("PaymentSchedule", back_populates="payments")
    reminders = relationship("PaymentReminder", back_populates="payment")


class PaymentReminder(Base):
    """Scheduled notification for a payment. Delivery happens outside this service."""
    __tablename__ = "payment_reminders"

    id = Column(Integer, primary_key=True, index=True)
    payment_id = Column(Integer, ForeignKey("contract_payments.id"), nullable=False, index=True)
    reminder_type = Column(String(20), nullable=False)  # due_soon, overdue, final_notice
    scheduled_for = Column(DateTime, nullable=False)
    status = Column(String(20), nullable=False, default="pending")  # pending, sent, failed, cancelled
    sent_at = Column(DateTime, nullable=True)
    email_sent = Column(Boolean, nullable=False, default=False)
    sms_sent = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, server_default=func.now())

    payment = relationship("ContractPayment", back_populates="reminders")


class StripeWebhookEvent(Base):
    """Idempotency ledger for Stripe webhook deliveries, keyed by the Stripe event id"""
    __tablename__ = "stripe_webhook_events"

    id = Column(Integer, primary_key=True, index=True)
    stripe_event_id = Column(String(255), unique=True, nullable=False, index=True)
    event_type = Column(String(100), nullable=False)
    received_at = Column(DateTime, server_default=func.now())
    processed_at = Column(DateTime, nullable=True)
    ok = Column(Boolean, nullable=False, default=False)
    error = Column(Text, nullable=True)
