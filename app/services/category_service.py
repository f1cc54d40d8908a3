"""
Category tree maintenance.

Categories are stored as rows keyed by id with a nullable parent_id column.
Every reparent is validated by walking the ancestor chain of the proposed
parent before anything is written, so the stored forest stays acyclic.
"""
import logging
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.core.errors import ConflictError, InvalidInputError, InvalidOperationError, NotFoundError
from app.models.business import Business
from app.models.categories import Category
from app.schemas.categories import CategoryCreate, CategoryUpdate
from app.utils.slug import disambiguate, slugify

logger = logging.getLogger(__name__)

# Upper bound on the ancestor walk; a move that cannot be verified within it is refused
MAX_CATEGORY_DEPTH = 100
MIN_NAME_LENGTH = 2


def _clean_name(name: Optional[str]) -> str:
    name = (name or "").strip()
    if len(name) < MIN_NAME_LENGTH:
        raise InvalidInputError(
            f"Category name must be at least {MIN_NAME_LENGTH} characters long",
            field="name",
        )
    return name


class CategoryTreeManager:
    def __init__(self, db: Session):
        self.db = db

    def _get_or_404(self, category_id: int) -> Category:
        category = self.db.query(Category).filter(Category.id == category_id).first()
        if not category:
            raise NotFoundError(f"Category with ID {category_id} not found")
        return category

    def _unique_slug(self, name: str, exclude_id: Optional[int] = None) -> str:
        slug = slugify(name)
        if not slug:
            raise InvalidInputError("Category name must contain letters or digits", field="name")

        query = self.db.query(Category.id).filter(Category.slug == slug)
        if exclude_id is not None:
            query = query.filter(Category.id != exclude_id)
        if query.first():
            # Single attempt; the suffixed slug is not checked again
            slug = disambiguate(slug)
        return slug

    def _require_parent(self, parent_id: int) -> Category:
        parent = self.db.query(Category).filter(Category.id == parent_id).first()
        if not parent:
            raise InvalidInputError(f"Parent category with ID {parent_id} not found", field="parent_id")
        return parent

    def _check_reparent(self, category_id: int, new_parent_id: int) -> None:
        if new_parent_id == category_id:
            raise InvalidOperationError("A category cannot be its own parent", field="parent_id")

        self._require_parent(new_parent_id)

        current_id = new_parent_id
        seen = set()
        while current_id is not None and current_id not in seen:
            if current_id == category_id:
                raise InvalidOperationError(
                    "Cannot move a category under one of its own descendants",
                    field="parent_id",
                )
            if len(seen) >= MAX_CATEGORY_DEPTH:
                logger.warning(
                    f"Ancestor walk for category {category_id} stopped after {MAX_CATEGORY_DEPTH} steps"
                )
                raise InvalidOperationError(
                    f"Category hierarchy is deeper than {MAX_CATEGORY_DEPTH} levels; cannot verify the move",
                    field="parent_id",
                )
            seen.add(current_id)
            row = self.db.query(Category.parent_id).filter(Category.id == current_id).first()
            if row is None:
                # Missing intermediate node ends the chain
                return
            current_id = row.parent_id

    def _commit(self, category: Category) -> Category:
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.error(f"Integrity error saving category: {str(e)}")
            raise ConflictError("A category with this slug already exists", field="slug")
        self.db.refresh(category)
        return category

    def create(self, data: CategoryCreate) -> Category:
        name = _clean_name(data.name)
        if data.parent_id is not None:
            self._require_parent(data.parent_id)

        category = Category(
            name=name,
            slug=self._unique_slug(name),
            description=data.description.strip() if data.description else None,
            parent_id=data.parent_id,
            image_url=data.image_url or None,
            sort_order=data.sort_order,
            is_active=data.is_active,
        )
        self.db.add(category)
        category = self._commit(category)
        logger.info(f"Created category {category.name} (ID: {category.id}, slug: {category.slug})")
        return category

    def update(self, category_id: int, data: CategoryUpdate) -> Category:
        category = self._get_or_404(category_id)
        fields = data.model_dump(exclude_unset=True)

        # Validate everything before touching the row
        name = slug = None
        if "name" in fields:
            name = _clean_name(fields.pop("name"))
            if name != category.name:
                slug = self._unique_slug(name, exclude_id=category.id)

        if "parent_id" in fields:
            new_parent_id = fields["parent_id"]
            if new_parent_id is not None and new_parent_id != category.parent_id:
                self._check_reparent(category.id, new_parent_id)

        if name is not None:
            category.name = name
        if slug is not None:
            category.slug = slug
        for field, value in fields.items():
            if field in ("sort_order", "is_active") and value is None:
                continue
            setattr(category, field, value)

        category = self._commit(category)
        logger.info(f"Updated category {category.name} (ID: {category.id})")
        return category

    def delete(self, category_id: int) -> str:
        category = self._get_or_404(category_id)

        if self.db.query(Category.id).filter(Category.parent_id == category_id).first():
            raise ConflictError("Category has sub-categories and cannot be deleted")

        if self.db.query(Business.id).filter(Business.category_id == category_id).first():
            raise ConflictError("Category is used by businesses and cannot be deleted")

        name = category.name
        self.db.delete(category)
        self.db.commit()
        logger.info(f"Deleted category {name} (ID: {category_id})")
        return name

    def get(self, category_id: int) -> Category:
        category = (
            self.db.query(Category)
            .options(selectinload(Category.children))
            .filter(Category.id == category_id)
            .first()
        )
        if not category:
            raise NotFoundError(f"Category with ID {category_id} not found")
        return category

    def recent_businesses(self, category_id: int, limit: int = 10) -> List[Business]:
        return (
            self.db.query(Business)
            .filter(Business.category_id == category_id)
            .order_by(Business.created_at.desc())
            .limit(limit)
            .all()
        )

    def list_all(self) -> List[Category]:
        return (
            self.db.query(Category)
            .options(selectinload(Category.children))
            .order_by(Category.parent_id.asc().nullsfirst(), Category.sort_order, Category.name)
            .all()
        )

    def list_roots(self) -> List[Category]:
        return (
            self.db.query(Category)
            .options(selectinload(Category.children))
            .filter(Category.parent_id.is_(None))
            .order_by(Category.sort_order, Category.name)
            .all()
        )

    def business_counts(self) -> dict:
        rows = (
            self.db.query(Business.category_id, func.count(Business.id))
            .filter(Business.category_id.isnot(None))
            .group_by(Business.category_id)
            .all()
        )
        return {category_id: count for category_id, count in rows}
