"""
Payment Provider Module - Models
=================================
Per-mosque payment gateway credentials.

Models:
  - PaymentProvider: one row per (mosque, provider_type), edited by the mosque admin

Enums:
  - ProviderType: billplz / toyyibpay
"""

import enum
from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, UniqueConstraint, text,
)
from sqlalchemy.sql import func
from config.database import Base


class ProviderType(str, enum.Enum):
    BILLPLZ = "billplz"
    TOYYIBPAY = "toyyibpay"


class PaymentProvider(Base):
    __tablename__ = "payment_providers"

    id = Column(Integer, primary_key=True)
    mosque_id = Column(String, nullable=False, index=True)
    provider_type = Column(String, nullable=False)
    is_active = Column(Boolean, server_default=text("true"), default=True, nullable=False)
    is_sandbox = Column(Boolean, server_default=text("true"), default=True, nullable=False)

    # Billplz
    billplz_api_key = Column(String, nullable=True)
    billplz_x_signature_key = Column(String, nullable=True)
    billplz_collection_id = Column(String, nullable=True)

    # ToyyibPay
    toyyibpay_secret_key = Column(String, nullable=True)
    toyyibpay_category_code = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("mosque_id", "provider_type", name="uq_payment_provider_mosque_type"),
    )

    def __repr__(self):
        state = "active" if self.is_active else "inactive"
        return f"<PaymentProvider {self.provider_type} mosque={self.mosque_id} ({state})>"
