"""License model"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from igbridge.models.base import Base


class License(Base):
    """License key, bound to a single domain on first validation"""
    __tablename__ = "licenses"

    id = Column(Integer, primary_key=True, index=True)
    license_key = Column(String(32), unique=True, nullable=False, index=True)
    domain = Column(String(255), nullable=True)  # NULL until first successful validation
    is_active = Column(Boolean, default=True, nullable=False)
    activated_at = Column(DateTime(timezone=True), nullable=True)
    billing_account_id = Column(Integer, ForeignKey("billing_accounts.id", ondelete="SET NULL"), nullable=True, unique=True, index=True)
    user_no = Column(String(64))
    user_name = Column(String(255))
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    # Relationship
    billing_account = relationship("BillingAccount", back_populates="license")
