"""
Ad lifecycle and targeting.

Who may create an ad for which target, the moderation state machine, the
public eligibility query and the click/impression counters all live here.
Routes stay thin: they resolve the principal, read the form and call into
AdLifecycleEngine.
"""
import logging
import math
from datetime import datetime
from typing import Dict, Iterable, List, NamedTuple, Optional, Union

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from app.core.errors import (
    ForbiddenError,
    ImageUploadError,
    InvalidInputError,
    NotFoundError,
    StorageUnavailableError,
)
from app.database import SessionLocal
from app.models.ads import Ad, AdStatus, AdTargetType, BannerType
from app.models.business import Business
from app.models.user import ROLE_ADMIN, ROLE_OWNER, User
from app.schemas.ads import AdCreate, AdminAdUpdate, OwnerAdUpdate
from app.utils.dates import as_utc, utcnow

logger = logging.getLogger(__name__)

ALLOWED_SORT_FIELDS = ("created_at", "priority", "clicks", "impressions")
PUBLIC_ADS_LIMIT = 10
BANNER_ADS_LIMIT = 5

# form field -> (column, storage folder)
ASSET_FIELDS = {
    "image": ("image_url", "ads"),
    "mobile_image": ("mobile_image_url", "ads/mobile"),
    "tablet_image": ("tablet_image_url", "ads/tablet"),
}


class AssetUpload(NamedTuple):
    filename: str
    content: bytes


def parse_id(value, field: str = "id") -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        raise InvalidInputError(f"Invalid {field}: {value!r}", field=field)


def parse_status(value: str) -> AdStatus:
    try:
        return AdStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in AdStatus)
        raise InvalidInputError(f"Invalid status '{value}'. Allowed: {allowed}", field="status")


def parse_banner_type(value: str) -> BannerType:
    try:
        return BannerType(value)
    except ValueError:
        allowed = ", ".join(b.value for b in BannerType)
        raise InvalidInputError(f"Invalid banner type '{value}'. Allowed: {allowed}", field="banner_type")


def update_schema_for(role: str):
    """Owners get the restricted update schema, administrators the full one."""
    return AdminAdUpdate if role == ROLE_ADMIN else OwnerAdUpdate


def record_impressions(ad_ids: List[int]) -> None:
    """
    Count one impression for every served ad.

    Runs after the response has been sent, in its own session. Failures are
    logged and never reach the caller.
    """
    if not ad_ids:
        return
    db = SessionLocal()
    try:
        db.query(Ad).filter(Ad.id.in_(ad_ids)).update(
            {Ad.impressions: Ad.impressions + 1}, synchronize_session=False
        )
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to record impressions for ads {ad_ids}: {str(e)}", exc_info=True)
    finally:
        db.close()


class AdLifecycleEngine:
    def __init__(self, db: Session, storage=None):
        self.db = db
        self.storage = storage

    # -- helpers ---------------------------------------------------------

    def _get_or_404(self, ad_id: int) -> Ad:
        ad = self.db.query(Ad).filter(Ad.id == ad_id).first()
        if not ad:
            raise NotFoundError(f"Ad with ID {ad_id} not found")
        return ad

    def _owned_business(self, principal: User, business_id: int) -> Business:
        business = self.db.query(Business).filter(Business.id == business_id).first()
        if not business:
            raise NotFoundError(f"Business with ID {business_id} not found")
        if business.owner_id != principal.id:
            raise ForbiddenError("You can only advertise a business you own")
        return business

    def _check_owner_of_ad(self, principal: User, ad: Ad) -> None:
        if ad.target_type != AdTargetType.BUSINESS.value or not ad.target_id:
            raise ForbiddenError("You are not allowed to manage this ad")
        business = self.db.query(Business).filter(Business.id == ad.target_id).first()
        if not business or business.owner_id != principal.id:
            raise ForbiddenError("You are not allowed to manage this ad")

    @staticmethod
    def _check_window(start_at: datetime, end_at: datetime) -> None:
        if as_utc(end_at) <= as_utc(start_at):
            raise InvalidInputError("End date must be after start date", field="end_at")

    def _upload_assets(self, assets: Optional[Dict[str, AssetUpload]]) -> Dict[str, str]:
        urls = {}
        if not assets:
            return urls
        if self.storage is None:
            raise StorageUnavailableError(
                "Google Cloud Storage is not configured. Check server logs for details."
            )
        for field, upload in assets.items():
            if field not in ASSET_FIELDS:
                continue
            column, folder = ASSET_FIELDS[field]
            try:
                result = self.storage.upload_bytes(upload.content, upload.filename, folder)
            except Exception as e:
                logger.error(f"Error uploading {field} to storage: {str(e)}")
                raise ImageUploadError(f"Failed to upload {field}", field=field)
            urls[column] = result["url"]
        return urls

    def release_assets(self, urls: Iterable[Optional[str]]) -> None:
        """Best-effort removal of creatives; every URL is attempted."""
        urls = [url for url in urls if url]
        if not urls:
            return
        if self.storage is None:
            logger.warning(f"Storage not configured, leaving {len(urls)} asset(s) in place")
            return
        for url in urls:
            try:
                if not self.storage.delete_image(url):
                    logger.warning(f"Asset could not be released: {url}")
            except Exception as e:
                logger.error(f"Error releasing asset {url}: {str(e)}")

    def transition(self, ad: Ad, new_status: AdStatus, rejection_reason: Optional[str] = None) -> None:
        """Only writer of Ad.status."""
        ad.status = new_status.value
        if new_status == AdStatus.APPROVED:
            ad.is_active = True
        elif new_status == AdStatus.REJECTED and rejection_reason:
            ad.rejection_reason = rejection_reason

    # -- mutations -------------------------------------------------------

    def create(self, principal: User, data: AdCreate, assets: Optional[Dict[str, AssetUpload]] = None) -> Ad:
        if principal.role not in (ROLE_ADMIN, ROLE_OWNER):
            raise ForbiddenError("Only administrators and business owners can create ads")

        target_id = None
        if principal.role == ROLE_ADMIN:
            if data.target_type != AdTargetType.EXTERNAL:
                raise InvalidInputError(
                    "Administrators can only create external (system-wide) ads", field="target_type"
                )
        else:
            if data.target_type != AdTargetType.BUSINESS:
                raise InvalidInputError(
                    "Business owners can only create ads for their own business", field="target_type"
                )
            target_id = parse_id(data.target_id, field="target_id")
            self._owned_business(principal, target_id)

        self._check_window(data.start_at, data.end_at)
        urls = self._upload_assets(assets)

        ad = Ad(
            title=data.title,
            content=data.content,
            cta_text=data.cta_text,
            cta_url=data.cta_url,
            background_color=data.background_color,
            text_color=data.text_color,
            url=data.url,
            banner_type=data.banner_type.value,
            target_type=data.target_type.value,
            target_id=target_id,
            start_at=as_utc(data.start_at),
            end_at=as_utc(data.end_at),
            status=AdStatus.PENDING_REVIEW.value,
            is_active=False,
            priority=0,
            clicks=0,
            impressions=0,
            **urls,
        )
        self.db.add(ad)
        self.db.commit()
        self.db.refresh(ad)
        logger.info(f"User {principal.id} ({principal.role}) created ad {ad.id} targeting {ad.target_type}")
        return ad

    def set_status(self, principal: User, ad_id: int, new_status: str, rejection_reason: Optional[str] = None) -> Ad:
        if principal.role != ROLE_ADMIN:
            raise ForbiddenError("Only administrators can review ads")
        status = parse_status(new_status)
        ad = self._get_or_404(ad_id)

        self.transition(ad, status, rejection_reason)
        self.db.commit()
        self.db.refresh(ad)
        logger.info(f"Ad {ad.id} moved to {ad.status} by admin {principal.id}")
        return ad

    def update(
        self,
        principal: User,
        ad_id: int,
        changes: Union[OwnerAdUpdate, AdminAdUpdate],
        assets: Optional[Dict[str, AssetUpload]] = None,
    ) -> Ad:
        if principal.role not in (ROLE_ADMIN, ROLE_OWNER):
            raise ForbiddenError("You are not allowed to manage ads")
        ad = self._get_or_404(ad_id)

        if principal.role == ROLE_OWNER:
            self._check_owner_of_ad(principal, ad)
            if isinstance(changes, AdminAdUpdate):
                changes = OwnerAdUpdate.model_validate(changes.model_dump(exclude_unset=True))

        fields = changes.model_dump(exclude_unset=True)
        new_status = fields.pop("status", None)
        rejection_reason = fields.pop("rejection_reason", None)

        for key in ("start_at", "end_at"):
            if key in fields and fields[key] is None:
                raise InvalidInputError(f"{key} cannot be empty", field=key)
            if key in fields:
                fields[key] = as_utc(fields[key])
        if "title" in fields and not fields["title"]:
            raise InvalidInputError("Title cannot be empty", field="title")
        if "start_at" in fields or "end_at" in fields:
            self._check_window(fields.get("start_at", ad.start_at), fields.get("end_at", ad.end_at))

        target_type = AdTargetType(fields.get("target_type") or ad.target_type)
        if target_type == AdTargetType.EXTERNAL:
            # System-wide ads never point at a record
            if "target_type" in fields or "target_id" in fields:
                fields["target_id"] = None
        elif target_type == AdTargetType.BUSINESS:
            target_id = fields.get("target_id", ad.target_id)
            if target_id is None:
                raise InvalidInputError("Business ads need a target_id", field="target_id")
            if "target_id" in fields and not self.db.query(Business.id).filter(Business.id == target_id).first():
                raise NotFoundError(f"Business with ID {target_id} not found")

        urls = self._upload_assets(assets)
        replaced = [getattr(ad, column) for column in urls if getattr(ad, column)]

        for field, value in fields.items():
            if hasattr(value, "value"):
                value = value.value
            if field in ("priority", "is_active", "banner_type", "target_type") and value is None:
                continue
            setattr(ad, field, value)
        for column, url in urls.items():
            setattr(ad, column, url)
        if new_status is not None:
            self.transition(ad, AdStatus(new_status), rejection_reason)
        elif rejection_reason is not None:
            ad.rejection_reason = rejection_reason

        self.db.commit()
        self.db.refresh(ad)
        self.release_assets(replaced)
        logger.info(f"Ad {ad.id} updated by user {principal.id} ({principal.role})")
        return ad

    def delete(self, principal: User, ad_id: int) -> None:
        if principal.role != ROLE_ADMIN:
            raise ForbiddenError("Only administrators can delete ads")
        ad = self._get_or_404(ad_id)
        assets = [ad.image_url, ad.mobile_image_url, ad.tablet_image_url]

        self.db.delete(ad)
        self.db.commit()
        self.release_assets(assets)
        logger.info(f"Ad {ad_id} deleted by admin {principal.id}")

    def increment_clicks(self, ad_id) -> None:
        ad_id = parse_id(ad_id)
        updated = self.db.query(Ad).filter(Ad.id == ad_id).update(
            {Ad.clicks: Ad.clicks + 1}, synchronize_session=False
        )
        if not updated:
            self.db.rollback()
            raise NotFoundError(f"Ad with ID {ad_id} not found")
        self.db.commit()

    # -- queries ---------------------------------------------------------

    def get(self, principal: User, ad_id: int) -> Ad:
        ad = self._get_or_404(ad_id)
        if principal.role == ROLE_OWNER:
            self._check_owner_of_ad(principal, ad)
        elif principal.role != ROLE_ADMIN:
            raise ForbiddenError("You are not allowed to view this ad")
        return ad

    def list_public_eligible(
        self,
        banner_type: Optional[BannerType] = None,
        limit: int = PUBLIC_ADS_LIMIT,
        now: Optional[datetime] = None,
    ) -> List[Ad]:
        now = as_utc(now) if now else utcnow()
        query = self.db.query(Ad).filter(
            Ad.status == AdStatus.APPROVED.value,
            Ad.is_active.is_(True),
            Ad.start_at <= now,
            Ad.end_at >= now,
        )
        if banner_type is not None:
            query = query.filter(Ad.banner_type == BannerType(banner_type).value)
        return (
            query.order_by(Ad.priority.desc(), Ad.created_at.desc(), Ad.id.desc())
            .limit(limit)
            .all()
        )

    def _paginate(self, query, page: int, limit: int, order_by) -> dict:
        total = query.count()
        items = query.order_by(*order_by).offset((page - 1) * limit).limit(limit).all()
        return {
            "items": items,
            "total": total,
            "page": page,
            "pages": math.ceil(total / limit) if limit else 0,
        }

    def list_mine(self, principal: User, page: int = 1, limit: int = 20, status: Optional[str] = None) -> dict:
        if principal.role != ROLE_OWNER:
            raise ForbiddenError("Only business owners have their own ads")
        owned = select(Business.id).where(Business.owner_id == principal.id)
        query = self.db.query(Ad).filter(
            Ad.target_type == AdTargetType.BUSINESS.value,
            Ad.target_id.in_(owned),
        )
        if status:
            query = query.filter(Ad.status == parse_status(status).value)
        return self._paginate(query, page, limit, [Ad.created_at.desc(), Ad.id.desc()])

    def list_all(
        self,
        principal: User,
        page: int = 1,
        limit: int = 20,
        status: Optional[str] = None,
        banner_type: Optional[str] = None,
        search: Optional[str] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> dict:
        if principal.role != ROLE_ADMIN:
            raise ForbiddenError("Only administrators can list all ads")
        if sort_by not in ALLOWED_SORT_FIELDS:
            raise InvalidInputError(
                f"Sorting by '{sort_by}' is not allowed. Allowed: {', '.join(ALLOWED_SORT_FIELDS)}",
                field="sort_by",
            )
        if sort_order not in ("asc", "desc"):
            raise InvalidInputError("sort_order must be 'asc' or 'desc'", field="sort_order")

        query = self.db.query(Ad)
        if status:
            query = query.filter(Ad.status == parse_status(status).value)
        if banner_type:
            query = query.filter(Ad.banner_type == parse_banner_type(banner_type).value)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(Ad.title.ilike(pattern), Ad.content.ilike(pattern)))

        column = getattr(Ad, sort_by)
        ordering = column.asc() if sort_order == "asc" else column.desc()
        return self._paginate(query, page, limit, [ordering, Ad.id.desc()])
