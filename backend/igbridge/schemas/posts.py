"""Pydantic schemas for publishing"""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class PublishPhotoRequest(BaseModel):
    # WordPress sends numeric post ids
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    facebook_page_id: str = Field(..., alias="facebookPageId", min_length=1)
    image_url: str = Field(..., alias="imageUrl", min_length=1)
    caption: str = Field(..., min_length=1)
    wordpress_post_id: Optional[str] = Field(None, alias="wordpressPostId")
