"""
Contribution Module - Models
=============================
Khairat contributions paid through a mosque's payment gateway.
"""

import enum
from sqlalchemy import Column, String, Numeric, Text, DateTime, JSON, Index
from sqlalchemy.sql import func
from config.database import Base
from common.helpers import new_uuid


class ContributionStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class KhairatContribution(Base):
    __tablename__ = "khairat_contributions"

    id = Column(String(36), primary_key=True, default=new_uuid)
    mosque_id = Column(String, nullable=False, index=True)
    contributor_id = Column(String, nullable=True)
    contributor_name = Column(String, nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(String, default=ContributionStatus.PENDING.value, nullable=False)
    notes = Column(Text, nullable=True)

    # Payment
    payment_method = Column(String, nullable=True)      # billplz / toyyibpay
    payment_reference = Column(String, nullable=True)
    bill_id = Column(String, nullable=True)             # provider-assigned, set once at bill creation
    payment_data = Column(JSON, nullable=True)          # see modules/payment/metadata.py

    contributed_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("ix_contribution_id_bill", "id", "bill_id"),
        Index("ix_contribution_status_method", "status", "payment_method"),
    )

    @property
    def status_enum(self) -> ContributionStatus:
        return ContributionStatus(self.status)

    def __repr__(self):
        return f"<KhairatContribution {self.id} {self.status} bill={self.bill_id}>"
