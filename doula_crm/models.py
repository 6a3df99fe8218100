import uuid

from sqlalchemy import (
    Column,
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


def generate_public_id():
    """Generate a unique public ID for secure public access"""
    return str(uuid.uuid4())


class Client(Base):
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(String(36), unique=True, index=True, default=generate_public_id)
    first_name = Column(String(255), nullable=False)
    last_name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True, index=True)
    phone = Column(String(50), nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    contracts = relationship("Contract", back_populates="client")

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)


class Contract(Base):
    __tablename__ = "contracts"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(String(36), unique=True, index=True, default=generate_public_id)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False)
    title = Column(String(255), nullable=False)
    total_amount = Column(Numeric(10, 2), nullable=False)
    deposit_amount = Column(Numeric(10, 2), nullable=False, default=0)
    # Status workflow: draft → sent → signed → active (fully paid)
    # signed: e-signature completed, payments can be collected
    # active: every scheduled payment has been collected
    status = Column(String(50), default="draft", nullable=False)
    signed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    client = relationship("Client", back_populates="contracts")
    payment_schedules = relationship("PaymentSchedule", back_populates="contract")
    payments = relationship("ContractPayment", back_populates="contract")


# Legacy compatibility tables. Older reporting reads payments from the
# customers/payment_methods/charges trio, so successful contract payments are mirrored here.


class Customer(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)
    stripe_customer_id = Column(String(255), unique=True, nullable=True)
    qbo_customer_id = Column(String(255), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    charges = relationship("Charge", back_populates="customer")


class PaymentMethod(Base):
    __tablename__ = "payment_methods"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False)
    stripe_payment_method_id = Column(String(255), unique=True, nullable=True)
    card_brand = Column(String(50), nullable=True)
    card_last4 = Column(String(4), nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class Charge(Base):
    __tablename__ = "charges"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True)
    payment_method_id = Column(Integer, ForeignKey("payment_methods.id"), nullable=True)
    # One charge per payment intent, replays of the same intent never add rows
    stripe_payment_intent_id = Column(String(255), unique=True, nullable=False, index=True)
    amount = Column(Integer, nullable=False)  # cents
    currency = Column(String(10), default="usd")
    status = Column(String(50), nullable=False)
    description = Column(Text, nullable=True)
    contract_payment_id = Column(Integer, ForeignKey("contract_payments.id"), nullable=True)

    # QuickBooks sync state: pending, synced, failed
    qb_sync_status = Column(String(20), default="pending", nullable=False)
    qb_sync_error = Column(Text, nullable=True)
    qbo_payment_id = Column(String(255), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    customer = relationship("Customer", back_populates="charges")
