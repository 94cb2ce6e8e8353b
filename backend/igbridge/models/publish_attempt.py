"""PublishAttempt model"""
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Index
from datetime import datetime, timezone
from igbridge.models.base import Base


class PublishAttempt(Base):
    """Append-only log of publish invocations, one row per call whatever the outcome"""
    __tablename__ = "post_attempts"

    id = Column(Integer, primary_key=True, index=True)
    license_id = Column(Integer, ForeignKey("licenses.id", ondelete="SET NULL"), nullable=True, index=True)
    facebook_page_id = Column(String(64), nullable=False, index=True)
    image_url = Column(Text)
    caption = Column(Text)
    wordpress_post_id = Column(String(64))
    status = Column(String(32), nullable=False)  # success, failed, rate_limited, token_expired, container_error, publish_error
    stage = Column(String(32), nullable=False)  # last stage reached
    error_code = Column(String(64))
    error_message = Column(Text)
    quota_usage = Column(Integer)
    quota_total = Column(Integer, default=25)
    container_id = Column(String(64))
    media_id = Column(String(64))
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (
        Index('ix_post_attempts_status_created', 'status', 'created_at'),
    )
