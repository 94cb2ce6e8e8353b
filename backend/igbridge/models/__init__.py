"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from igbridge.models.base import Base
from igbridge.models.instagram_account import InstagramAccount
from igbridge.models.billing_account import BillingAccount
from igbridge.models.license import License
from igbridge.models.publish_attempt import PublishAttempt
from igbridge.models.post_history import PostHistory

# Export all for convenience
__all__ = [
    "Base", "InstagramAccount", "BillingAccount", "License",
    "PublishAttempt", "PostHistory"
]
