"""
QuickBooks Integration Models
Database models for storing QuickBooks OAuth tokens and sync data
"""
from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class QuickBooksIntegration(Base):
    """QuickBooks OAuth tokens and company information for the practice's accounting company"""
    __tablename__ = "quickbooks_integrations"

    id = Column(Integer, primary_key=True, index=True)
    connected_by = Column(String(255), nullable=True)  # auth user id of the admin who connected

    # OAuth tokens (encrypted)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=False)
    token_expires_at = Column(DateTime, nullable=False)

    # QuickBooks company info
    realm_id = Column(String(255), nullable=False)  # QuickBooks company ID
    company_name = Column(String(255), nullable=True)

    # Sync settings
    sync_payments = Column(Boolean, default=True)
    sync_customers = Column(Boolean, default=True)
    last_payment_sync = Column(DateTime, nullable=True)

    # Environment (sandbox or production)
    environment = Column(String(50), default="sandbox")

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class QuickBooksSyncLog(Base):
    """Track QuickBooks sync operations"""
    __tablename__ = "quickbooks_sync_logs"

    id = Column(Integer, primary_key=True, index=True)
    integration_id = Column(Integer, ForeignKey("quickbooks_integrations.id", ondelete="SET NULL"), nullable=True)

    sync_type = Column(String(50), nullable=False)  # payment, customer
    entity_type = Column(String(50), nullable=False)  # Charge, Customer
    entity_id = Column(Integer, nullable=False)

    quickbooks_id = Column(String(255), nullable=True)  # QuickBooks entity ID

    status = Column(String(50), nullable=False)  # success, failed
    error_message = Column(Text, nullable=True)

    sync_data = Column(JSON, nullable=True)

    created_at = Column(DateTime, server_default=func.now())

    integration = relationship("QuickBooksIntegration")
