import enum
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime

from app.database import Base


class BannerType(str, enum.Enum):
    HERO = "hero"
    SIDEBAR = "sidebar"
    POPUP = "popup"


class AdTargetType(str, enum.Enum):
    BUSINESS = "business"
    LISTING = "listing"
    CATEGORY = "category"
    EXTERNAL = "external"


class AdStatus(str, enum.Enum):
    PENDING_REVIEW = "pending_review"
    APPROVED = "approved"
    REJECTED = "rejected"


class Ad(Base):
    __tablename__ = "ads"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    title = Column(String(200), nullable=False)
    content = Column(Text, nullable=True)

    # Creatives
    image_url = Column(String(500), nullable=True)
    mobile_image_url = Column(String(500), nullable=True)
    tablet_image_url = Column(String(500), nullable=True)
    cta_text = Column(String(100), nullable=True)
    cta_url = Column(String(500), nullable=True)
    background_color = Column(String(20), nullable=True)
    text_color = Column(String(20), nullable=True)
    url = Column(String(500), nullable=True)

    # Targeting
    banner_type = Column(String(20), nullable=False, default=BannerType.HERO.value, index=True)
    target_type = Column(String(20), nullable=False, index=True)
    target_id = Column(Integer, nullable=True, index=True)  # businesses.id when target_type is business

    # Display window
    start_at = Column(DateTime(timezone=True), nullable=False)
    end_at = Column(DateTime(timezone=True), nullable=False)

    # Moderation
    status = Column(String(20), nullable=False, default=AdStatus.PENDING_REVIEW.value, index=True)
    is_active = Column(Boolean, nullable=False, default=False)
    priority = Column(Integer, nullable=False, default=0)
    rejection_reason = Column(Text, nullable=True)

    # Counters
    clicks = Column(Integer, nullable=False, default=0)
    impressions = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
