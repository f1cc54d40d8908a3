from pydantic import BaseModel, Field, field_validator
from typing import List, Optional
from datetime import datetime

from app.models.ads import AdStatus, AdTargetType, BannerType


def _strip_title(value):
    if isinstance(value, str):
        value = value.strip()
    return value


class AdCreate(BaseModel):
    """Fields accepted when an ad is created (multipart form, images excluded)"""
    title: str = Field(..., min_length=1, max_length=200, description="Ad title (required)")
    content: Optional[str] = Field(None, description="Ad body text")
    cta_text: Optional[str] = Field(None, max_length=100)
    cta_url: Optional[str] = Field(None, max_length=500)
    background_color: Optional[str] = Field(None, max_length=20)
    text_color: Optional[str] = Field(None, max_length=20)
    url: Optional[str] = Field(None, max_length=500)
    banner_type: BannerType = BannerType.HERO
    target_type: AdTargetType
    target_id: Optional[str] = Field(None, description="Business ID for business ads")
    start_at: datetime
    end_at: datetime

    strip_title = field_validator("title", mode="before")(_strip_title)


class OwnerAdUpdate(BaseModel):
    """
    Update submitted by a business owner.

    Moderation and targeting fields (status, priority, is_active, target_type,
    target_id) are not part of this schema, so they are dropped when an owner
    sends them.
    """
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    content: Optional[str] = None
    cta_text: Optional[str] = Field(None, max_length=100)
    cta_url: Optional[str] = Field(None, max_length=500)
    background_color: Optional[str] = Field(None, max_length=20)
    text_color: Optional[str] = Field(None, max_length=20)
    url: Optional[str] = Field(None, max_length=500)
    banner_type: Optional[BannerType] = None
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None

    strip_title = field_validator("title", mode="before")(_strip_title)


class AdminAdUpdate(OwnerAdUpdate):
    """Update submitted by an administrator"""
    status: Optional[AdStatus] = None
    rejection_reason: Optional[str] = None
    priority: Optional[int] = None
    is_active: Optional[bool] = None
    target_type: Optional[AdTargetType] = None
    target_id: Optional[int] = None


class AdStatusUpdate(BaseModel):
    status: str = Field(..., description="pending_review, approved or rejected")
    rejection_reason: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {"status": "rejected", "rejection_reason": "Image is too blurry"}
        }


class AdResponse(BaseModel):
    id: int
    title: str
    content: Optional[str] = None
    image_url: Optional[str] = None
    mobile_image_url: Optional[str] = None
    tablet_image_url: Optional[str] = None
    cta_text: Optional[str] = None
    cta_url: Optional[str] = None
    background_color: Optional[str] = None
    text_color: Optional[str] = None
    url: Optional[str] = None
    banner_type: str
    target_type: str
    target_id: Optional[int] = None
    start_at: datetime
    end_at: datetime
    status: str
    is_active: bool
    priority: int
    clicks: int
    impressions: int
    rejection_reason: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AdPaginatedResponse(BaseModel):
    items: List[AdResponse]
    total: int
    page: int
    pages: int
