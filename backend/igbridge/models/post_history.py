"""PostHistory model"""
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey
from datetime import datetime, timezone
from igbridge.models.base import Base


class PostHistory(Base):
    """Successfully published posts"""
    __tablename__ = "post_history"

    id = Column(Integer, primary_key=True, index=True)
    license_id = Column(Integer, ForeignKey("licenses.id", ondelete="SET NULL"), nullable=True, index=True)
    facebook_page_id = Column(String(64), nullable=False, index=True)
    instagram_media_id = Column(String(64), nullable=False, unique=True)
    wordpress_post_id = Column(String(64))
    caption = Column(Text)
    image_url = Column(Text)
    permalink = Column(Text)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
