# package marker for app.models

# Import all models to ensure relationships are properly initialized
from app.models.user import User
from app.models.categories import Category
from app.models.business import Business
from app.models.ads import Ad, AdStatus, AdTargetType, BannerType

__all__ = [
    "User",
    "Category",
    "Business",
    "Ad",
    "AdStatus",
    "AdTargetType",
    "BannerType",
]
