"""BillingAccount model"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from igbridge.models.base import Base


class BillingAccount(Base):
    """Stripe subscription state for an account that owns a license"""
    __tablename__ = "billing_accounts"

    id = Column(Integer, primary_key=True, index=True)
    login_account = Column(String(255), unique=True, nullable=False, index=True)
    stripe_customer_id = Column(String(255), unique=True, nullable=True, index=True)
    subscription_id = Column(String(255), nullable=True)
    subscription_status = Column(String(50), nullable=True)  # 'active', 'trialing', 'canceled', 'past_due', 'unpaid'
    subscription_plan = Column(String(50), nullable=True)
    subscription_current_period_end = Column(DateTime(timezone=True), nullable=True)
    trial_end = Column(DateTime(timezone=True), nullable=True)
    cancel_at_period_end = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    # Relationship
    license = relationship("License", back_populates="billing_account", uselist=False)
