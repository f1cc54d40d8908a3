import logging
from typing import List, Optional
from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, status
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.datastructures import UploadFile as StarletteUploadFile

from app.database import get_db
from app.models.user import User
from app.schemas.ads import AdCreate, AdPaginatedResponse, AdResponse, AdStatusUpdate
from app.core.dependencies import get_storage_service, require_role
from app.core.errors import (
    DirectoryError,
    InvalidInputError,
    to_http_exception,
    unexpected_http_exception,
)
from app.services.ad_service import (
    ASSET_FIELDS,
    BANNER_ADS_LIMIT,
    PUBLIC_ADS_LIMIT,
    AdLifecycleEngine,
    AssetUpload,
    parse_banner_type,
    record_impressions,
    update_schema_for,
)

router = APIRouter(tags=["ads"])
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ALLOWED_IMAGE_TYPES = ["image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp"]
MAX_IMAGE_BYTES = 5 * 1024 * 1024


async def _read_ad_payload(request: Request):
    """
    Split an ad request into plain fields and uploaded creatives.

    Multipart and url-encoded forms are accepted (images only in multipart);
    a JSON body is accepted for changes without images.
    """
    if request.headers.get("content-type", "").startswith("application/json"):
        body = await request.json()
        if not isinstance(body, dict):
            raise InvalidInputError("Request body must be a JSON object")
        return {k: v for k, v in body.items() if v is not None}, {}

    form = await request.form()
    fields = {}
    assets = {}
    for key, value in form.multi_items():
        if isinstance(value, StarletteUploadFile):
            if key not in ASSET_FIELDS or not value.filename:
                continue
            if value.content_type not in ALLOWED_IMAGE_TYPES:
                raise InvalidInputError(
                    f"Invalid file type '{value.content_type}'. Only JPEG, PNG, GIF, and WebP images are allowed.",
                    field=key,
                )
            content = await value.read()
            if not content:
                raise InvalidInputError("Empty file provided. Please select a valid image file.", field=key)
            if len(content) > MAX_IMAGE_BYTES:
                raise InvalidInputError("File size exceeds the maximum limit of 5 MB.", field=key)
            assets[key] = AssetUpload(value.filename, content)
        elif value != "":
            fields[key] = value
    return fields, assets


def _validate(schema, fields: dict):
    try:
        return schema.model_validate(fields)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ()))
        raise InvalidInputError(f"{field}: {first.get('msg')}", field=field or None)


@router.get("/public", response_model=List[AdResponse])
async def get_public_ads(background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
    """Currently displayable ads of every banner type - public access"""
    try:
        ads = AdLifecycleEngine(db).list_public_eligible(limit=PUBLIC_ADS_LIMIT)
        background_tasks.add_task(record_impressions, [ad.id for ad in ads])
        return ads

    except Exception as e:
        logger.error(f"Unexpected error fetching public ads: {str(e)}", exc_info=True)
        raise unexpected_http_exception(e)


@router.get("/public/{banner_type}", response_model=List[AdResponse])
async def get_public_ads_by_type(
    banner_type: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db)
):
    """Currently displayable ads for one banner placement - public access"""
    try:
        placement = parse_banner_type(banner_type)
        ads = AdLifecycleEngine(db).list_public_eligible(banner_type=placement, limit=BANNER_ADS_LIMIT)
        background_tasks.add_task(record_impressions, [ad.id for ad in ads])
        return ads

    except DirectoryError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Unexpected error fetching {banner_type} ads: {str(e)}", exc_info=True)
        raise unexpected_http_exception(e)


@router.post("/{ad_id}/click")
async def increment_ad_clicks(ad_id: str, db: Session = Depends(get_db)):
    """Count one click on an ad - public access"""
    try:
        AdLifecycleEngine(db).increment_clicks(ad_id)
        return {"message": "Click recorded", "id": ad_id}

    except DirectoryError as e:
        raise to_http_exception(e)
    except Exception as e:
        db.rollback()
        logger.error(f"Unexpected error counting click for ad {ad_id}: {str(e)}", exc_info=True)
        raise unexpected_http_exception(e)


@router.post("", response_model=AdResponse, status_code=status.HTTP_201_CREATED)
async def create_ad(
    request: Request,
    db: Session = Depends(get_db),
    storage=Depends(get_storage_service),
    current_user: User = Depends(require_role(["admin", "owner"]))
):
    """
    Create an ad - admin creates external ads, owners create ads for their own business.

    Form fields follow AdCreate; optional files: image, mobile_image, tablet_image.
    New ads start pending review and inactive.
    """
    try:
        fields, assets = await _read_ad_payload(request)
        data = _validate(AdCreate, fields)
        logger.info(f"User {current_user.id} ({current_user.role}) creating ad '{data.title}'")
        return AdLifecycleEngine(db, storage).create(current_user, data, assets)

    except DirectoryError as e:
        db.rollback()
        logger.warning(f"Ad not created for user {current_user.id}: {e.message}")
        raise to_http_exception(e)
    except Exception as e:
        db.rollback()
        logger.error(f"Unexpected error creating ad: {str(e)}", exc_info=True)
        raise unexpected_http_exception(e)


@router.get("", response_model=AdPaginatedResponse)
async def get_all_ads(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status_filter: Optional[str] = Query(None, alias="status"),
    banner_type: Optional[str] = None,
    search: Optional[str] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    db: Session = Depends(get_db),
    current_user: User = Depends(require_role(["admin"]))
):
    """All ads with filtering, search, sorting and pagination - admin only"""
    try:
        return AdLifecycleEngine(db).list_all(
            current_user,
            page=page,
            limit=limit,
            status=status_filter,
            banner_type=banner_type,
            search=search,
            sort_by=sort_by,
            sort_order=sort_order,
        )

    except DirectoryError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Unexpected error listing ads: {str(e)}", exc_info=True)
        raise unexpected_http_exception(e)


@router.get("/mine", response_model=AdPaginatedResponse)
async def get_my_ads(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status_filter: Optional[str] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_role(["owner"]))
):
    """Ads of the businesses owned by the current user"""
    try:
        return AdLifecycleEngine(db).list_mine(current_user, page=page, limit=limit, status=status_filter)

    except DirectoryError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Unexpected error listing ads of owner {current_user.id}: {str(e)}", exc_info=True)
        raise unexpected_http_exception(e)


@router.get("/{ad_id}", response_model=AdResponse)
async def get_ad(
    ad_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_role(["admin", "owner"]))
):
    """Get one ad - owners only see ads of their own businesses"""
    try:
        return AdLifecycleEngine(db).get(current_user, ad_id)

    except DirectoryError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Unexpected error fetching ad {ad_id}: {str(e)}", exc_info=True)
        raise unexpected_http_exception(e)


@router.put("/{ad_id}/status", response_model=AdResponse)
async def update_ad_status(
    ad_id: int,
    payload: AdStatusUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_role(["admin"]))
):
    """Approve, reject or send an ad back to review - admin only"""
    try:
        return AdLifecycleEngine(db).set_status(
            current_user, ad_id, payload.status, payload.rejection_reason
        )

    except DirectoryError as e:
        db.rollback()
        logger.warning(f"Status of ad {ad_id} not changed: {e.message}")
        raise to_http_exception(e)
    except Exception as e:
        db.rollback()
        logger.error(f"Unexpected error changing status of ad {ad_id}: {str(e)}", exc_info=True)
        raise unexpected_http_exception(e)


@router.put("/{ad_id}", response_model=AdResponse)
async def update_ad(
    ad_id: int,
    request: Request,
    db: Session = Depends(get_db),
    storage=Depends(get_storage_service),
    current_user: User = Depends(require_role(["admin", "owner"]))
):
    """
    Update an ad - admin may change anything, owners only content, placement and dates.

    Moderation fields sent by an owner (status, priority, is_active,
    target_type, target_id) are ignored.
    """
    try:
        fields, assets = await _read_ad_payload(request)
        changes = _validate(update_schema_for(current_user.role), fields)
        return AdLifecycleEngine(db, storage).update(current_user, ad_id, changes, assets)

    except DirectoryError as e:
        db.rollback()
        logger.warning(f"Ad {ad_id} not updated: {e.message}")
        raise to_http_exception(e)
    except Exception as e:
        db.rollback()
        logger.error(f"Unexpected error updating ad {ad_id}: {str(e)}", exc_info=True)
        raise unexpected_http_exception(e)


@router.delete("/{ad_id}", status_code=status.HTTP_200_OK)
async def delete_ad(
    ad_id: int,
    db: Session = Depends(get_db),
    storage=Depends(get_storage_service),
    current_user: User = Depends(require_role(["admin"]))
):
    """Delete an ad and release its creatives - admin only"""
    try:
        AdLifecycleEngine(db, storage).delete(current_user, ad_id)
        return {"message": "Ad deleted successfully", "id": ad_id}

    except DirectoryError as e:
        raise to_http_exception(e)
    except Exception as e:
        db.rollback()
        logger.error(f"Unexpected error deleting ad {ad_id}: {str(e)}", exc_info=True)
        raise unexpected_http_exception(e)
