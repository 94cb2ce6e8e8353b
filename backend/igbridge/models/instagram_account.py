"""InstagramAccount model"""
from sqlalchemy import Column, Integer, String, Text, DateTime, Index
from datetime import datetime, timezone
from igbridge.models.base import Base


class InstagramAccount(Base):
    """Page-scoped credentials for one Instagram Business account (token encrypted)"""
    __tablename__ = "instagram_accounts"

    id = Column(Integer, primary_key=True, index=True)
    facebook_user_id = Column(String(64), nullable=False, index=True)
    facebook_page_id = Column(String(64), nullable=False, unique=True, index=True)
    facebook_page_name = Column(String(255))
    instagram_user_id = Column(String(64), nullable=False, index=True)
    instagram_username = Column(String(255))
    access_token = Column(Text, nullable=False)  # Encrypted
    token_expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (
        Index('ix_instagram_accounts_token_expires_at', 'token_expires_at'),
    )
