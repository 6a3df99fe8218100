"""Contract domain schemas - Pydantic models for validation"""

import re
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ..payments.schemas import CreatePaymentScheduleRequest


def normalize_us_phone(phone: Optional[str]) -> Optional[str]:
    """Normalize a US phone number to E.164 (+1XXXXXXXXXX)"""
    if not phone:
        return phone

    digits = re.sub(r"\D", "", phone)
    if digits.startswith("1") and len(digits) == 11:
        digits = digits[1:]
    if len(digits) != 10:
        raise ValueError("Phone number must be 10 digits for US numbers")
    return f"+1{digits}"


class ClientCreate(BaseModel):
    """New client created together with their first contract"""

    firstName: str = Field(min_length=1)
    lastName: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v):
        return normalize_us_phone(v)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        if v and "@" not in v:
            raise ValueError("Invalid email address")
        return v.strip().lower() if v else v


class ContractCreate(BaseModel):
    """Schema for creating a new contract, for an existing client or a new one"""

    clientId: Optional[int] = None
    client: Optional[ClientCreate] = None
    title: str = Field(min_length=1)
    totalAmount: Decimal = Field(gt=0)
    depositAmount: Decimal = Field(default=Decimal("0"), ge=0)
    paymentSchedule: Optional[CreatePaymentScheduleRequest] = None

    @model_validator(mode="after")
    def check_client_and_amounts(self):
        if not self.clientId and not self.client:
            raise ValueError("Either clientId or client is required")
        if self.depositAmount > self.totalAmount:
            raise ValueError("Deposit amount cannot exceed total amount")
        return self


class ContractSignedRequest(BaseModel):
    """E-signature completion reported by the signing provider callback"""

    signedAt: Optional[datetime] = None


class ContractResponse(BaseModel):
    """Schema for contract response"""

    id: int
    public_id: Optional[str] = None
    clientId: int
    clientName: str
    clientEmail: Optional[str]
    title: str
    totalAmount: float
    depositAmount: float
    status: str
    signedAt: Optional[datetime]
    createdAt: Optional[datetime]
