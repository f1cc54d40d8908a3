import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from app.database import get_db
from app.models.ads import Ad, AdTargetType
from app.models.business import Business
from app.models.categories import Category
from app.models.user import User
from app.schemas.business import BusinessCreate, BusinessResponse, BusinessUpdate
from app.core.dependencies import get_storage_service, require_role
from app.services.ad_service import AdLifecycleEngine
from app.utils.slug import disambiguate, slugify

router = APIRouter(tags=["business"])
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def generate_business_slug(db: Session, name: str, exclude_id: Optional[int] = None) -> str:
    """Slug from the business name, suffixed once if already taken"""
    slug = slugify(name)
    if not slug:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": "ValidationError",
                "message": "Business name must contain letters or digits",
                "type": "invalid_input",
                "field": "name"
            }
        )
    query = db.query(Business.id).filter(Business.slug == slug)
    if exclude_id is not None:
        query = query.filter(Business.id != exclude_id)
    if query.first():
        slug = disambiguate(slug)
    return slug


def _check_category(db: Session, category_id: Optional[int]) -> None:
    if category_id is None:
        return
    if not db.query(Category.id).filter(Category.id == category_id).first():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": "ValidationError",
                "message": f"Category with ID {category_id} not found",
                "type": "invalid_input",
                "field": "category_id"
            }
        )


def _get_business_or_404(db: Session, business_id: int) -> Business:
    business = db.query(Business).filter(Business.id == business_id).first()
    if not business:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "error": "NotFoundError",
                "message": f"Business with ID {business_id} not found",
                "type": "resource_not_found"
            }
        )
    return business


def _check_can_manage(business: Business, current_user: User) -> None:
    if current_user.role != "admin" and business.owner_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": "ForbiddenError",
                "message": "You can only manage your own business",
                "type": "forbidden"
            }
        )


@router.post("/", response_model=BusinessResponse, status_code=status.HTTP_201_CREATED)
async def create_business(
    business_data: BusinessCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_role(["owner"]))
):
    """Create a business listing - only owners can create"""
    try:
        name = business_data.name.strip()
        _check_category(db, business_data.category_id)

        logger.info(f"Owner {current_user.id} ({current_user.email}) is creating business '{name}'")

        data = business_data.model_dump()
        data["name"] = name
        db_business = Business(
            **data,
            slug=generate_business_slug(db, name),
            owner_id=current_user.id
        )
        db.add(db_business)
        db.commit()
        db.refresh(db_business)

        logger.info(f"Business created successfully: {db_business.name} (ID: {db_business.id}, slug: {db_business.slug})")
        return db_business

    except HTTPException:
        raise
    except IntegrityError as e:
        db.rollback()
        logger.error(f"Database integrity error while creating business: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "error": "ConflictError",
                "message": "A business with this slug already exists. Please try again.",
                "type": "conflict",
                "field": "slug"
            }
        )
    except Exception as e:
        db.rollback()
        logger.error(f"Unexpected error creating business: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "UnexpectedError",
                "message": "An unexpected error occurred while creating the business. Please try again or contact support if the problem persists.",
                "type": "internal_error"
            }
        )


@router.get("/mine", response_model=List[BusinessResponse])
async def get_my_businesses(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_role(["owner"]))
):
    """Businesses owned by the current user"""
    return (
        db.query(Business)
        .filter(Business.owner_id == current_user.id)
        .order_by(Business.created_at.desc())
        .all()
    )


@router.get("/{business_id}", response_model=BusinessResponse)
async def get_business(business_id: int, db: Session = Depends(get_db)):
    """Get business details - public access"""
    return _get_business_or_404(db, business_id)


@router.put("/{business_id}", response_model=BusinessResponse)
async def update_business(
    business_id: int,
    business_data: BusinessUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_role(["owner", "admin"]))
):
    """Update business details - the owning owner and admins can update"""
    try:
        business = _get_business_or_404(db, business_id)
        _check_can_manage(business, current_user)

        update_data = business_data.model_dump(exclude_unset=True)
        if not update_data:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={
                    "error": "ValidationError",
                    "message": "No fields provided for update. Please provide at least one field to update.",
                    "type": "invalid_input"
                }
            )

        if "name" in update_data:
            name = (update_data["name"] or "").strip()
            if len(name) < 2:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail={
                        "error": "ValidationError",
                        "message": "Business name must be at least 2 characters.",
                        "type": "invalid_input",
                        "field": "name"
                    }
                )
            update_data["name"] = name
            if name != business.name:
                business.slug = generate_business_slug(db, name, exclude_id=business.id)

        if "category_id" in update_data:
            _check_category(db, update_data["category_id"])

        if "is_active" in update_data and update_data["is_active"] is None:
            update_data.pop("is_active")

        logger.info(f"User {current_user.id} ({current_user.role}) is updating business {business_id}")
        for field, value in update_data.items():
            setattr(business, field, value)

        db.commit()
        db.refresh(business)

        logger.info(f"Business details updated successfully for: {business.name}")
        return business

    except HTTPException:
        db.rollback()
        raise
    except IntegrityError as e:
        db.rollback()
        logger.error(f"Database integrity error while updating business: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "error": "ConflictError",
                "message": "Update failed due to duplicate data. Please try again.",
                "type": "conflict",
                "field": "slug"
            }
        )
    except Exception as e:
        db.rollback()
        logger.error(f"Unexpected error updating business: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "UnexpectedError",
                "message": "An unexpected error occurred while updating business details. Please try again or contact support.",
                "type": "internal_error"
            }
        )


@router.delete("/{business_id}", status_code=status.HTTP_200_OK)
async def delete_business(
    business_id: int,
    db: Session = Depends(get_db),
    storage=Depends(get_storage_service),
    current_user: User = Depends(require_role(["owner", "admin"]))
):
    """
    Delete a business together with the ads that target it.

    Both deletes are committed in one transaction; the ads' creatives are
    released afterwards and a failed release does not undo the delete.
    """
    try:
        business = _get_business_or_404(db, business_id)
        _check_can_manage(business, current_user)
        name = business.name

        ads = (
            db.query(Ad)
            .filter(Ad.target_type == AdTargetType.BUSINESS.value, Ad.target_id == business_id)
            .all()
        )
        assets = []
        for ad in ads:
            assets.extend([ad.image_url, ad.mobile_image_url, ad.tablet_image_url])
            db.delete(ad)
        db.delete(business)
        db.commit()

        AdLifecycleEngine(db, storage).release_assets(assets)
        logger.info(f"Business {name} (ID: {business_id}) and {len(ads)} ad(s) deleted by user {current_user.id}")
        return {
            "message": f"Business '{name}' deleted successfully",
            "id": business_id,
            "deleted_ads": len(ads)
        }

    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"Unexpected error deleting business: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "UnexpectedError",
                "message": "An unexpected error occurred while deleting the business. Please try again.",
                "type": "internal_error"
            }
        )
