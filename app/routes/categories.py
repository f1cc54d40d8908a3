import logging
from typing import List
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.database import get_db
from app.models.user import User
from app.schemas.categories import (
    CategoryBusiness,
    CategoryCreate,
    CategoryDetail,
    CategoryListItem,
    CategoryResponse,
    CategoryUpdate,
)
from app.core.dependencies import require_role
from app.core.errors import DirectoryError, to_http_exception, unexpected_http_exception
from app.services.category_service import CategoryTreeManager

router = APIRouter(tags=["categories"])
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _with_counts(categories, counts: dict) -> List[CategoryListItem]:
    items = []
    for category in categories:
        item = CategoryListItem.model_validate(category)
        item.business_count = counts.get(category.id, 0)
        items.append(item)
    return items


@router.get(
    "",
    response_model=List[CategoryListItem],
    status_code=status.HTTP_200_OK,
    summary="Get all categories",
    description="Retrieve every category with its children, ordered by parent, sort order and name"
)
async def get_all_categories(db: Session = Depends(get_db)):
    """
    Get the whole category forest. Public endpoint.

    Returns:
        List[CategoryListItem]: categories with children and business counts
    """
    try:
        logger.info("Fetching all categories")
        manager = CategoryTreeManager(db)
        categories = manager.list_all()
        logger.info(f"Successfully retrieved {len(categories)} categories")
        return _with_counts(categories, manager.business_counts())

    except Exception as e:
        logger.error(f"Unexpected error fetching categories: {str(e)}", exc_info=True)
        raise unexpected_http_exception(e)


@router.get(
    "/roots",
    response_model=List[CategoryListItem],
    status_code=status.HTTP_200_OK,
    summary="Get root categories",
)
async def get_root_categories(db: Session = Depends(get_db)):
    """Top-level categories only, with their direct children."""
    try:
        manager = CategoryTreeManager(db)
        return _with_counts(manager.list_roots(), manager.business_counts())

    except Exception as e:
        logger.error(f"Unexpected error fetching root categories: {str(e)}", exc_info=True)
        raise unexpected_http_exception(e)


@router.get(
    "/{category_id}",
    response_model=CategoryDetail,
    status_code=status.HTTP_200_OK,
    summary="Get category by ID",
    description="Retrieve a specific category with its children and some of its businesses"
)
async def get_category(category_id: int, db: Session = Depends(get_db)):
    """
    Get a specific category by ID.

    Args:
        category_id: The ID of the category to retrieve

    Raises:
        HTTPException: 404 if the category does not exist
    """
    try:
        logger.info(f"Fetching category with ID: {category_id}")
        manager = CategoryTreeManager(db)
        category = manager.get(category_id)
        detail = CategoryDetail.model_validate(category)
        detail.businesses = [CategoryBusiness.model_validate(b) for b in manager.recent_businesses(category_id)]
        return detail

    except DirectoryError as e:
        logger.warning(f"Category {category_id}: {e.message}")
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Unexpected error fetching category: {str(e)}", exc_info=True)
        raise unexpected_http_exception(e)


@router.post(
    "",
    response_model=CategoryResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create new category",
    description="Create a new category, optionally under a parent"
)
async def create_category(
    category_data: CategoryCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_role(["admin"]))
):
    """
    Create a new category with a generated slug.
    Requires admin role.

    Raises:
        HTTPException: 400 on invalid name or unknown parent, 409 on slug race
    """
    try:
        logger.info(f"Admin {current_user.id} creating category: {category_data.name}")
        return CategoryTreeManager(db).create(category_data)

    except DirectoryError as e:
        logger.warning(f"Category not created: {e.message}")
        raise to_http_exception(e)
    except Exception as e:
        db.rollback()
        logger.error(f"Unexpected error creating category: {str(e)}", exc_info=True)
        raise unexpected_http_exception(e)


@router.put(
    "/{category_id}",
    response_model=CategoryResponse,
    status_code=status.HTTP_200_OK,
    summary="Update category",
    description="Partially update a category; reparenting is checked for cycles"
)
async def update_category(
    category_id: int,
    category_data: CategoryUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_role(["admin"]))
):
    """
    Update a category. Only the fields present in the body are changed.
    Requires admin role.

    Raises:
        HTTPException: 404 if missing, 409 if the new parent would create a cycle
    """
    try:
        logger.info(f"Admin {current_user.id} updating category {category_id}")
        return CategoryTreeManager(db).update(category_id, category_data)

    except DirectoryError as e:
        db.rollback()
        logger.warning(f"Category {category_id} not updated: {e.message}")
        raise to_http_exception(e)
    except Exception as e:
        db.rollback()
        logger.error(f"Unexpected error updating category: {str(e)}", exc_info=True)
        raise unexpected_http_exception(e)


@router.delete(
    "/{category_id}",
    status_code=status.HTTP_200_OK,
    summary="Delete category",
    description="Delete a category that has no children and no businesses"
)
async def delete_category(
    category_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_role(["admin"]))
):
    """
    Delete a category.
    Requires admin role.

    Raises:
        HTTPException: 404 if missing, 409 if it has children or businesses
    """
    try:
        logger.info(f"Admin {current_user.id} deleting category {category_id}")
        name = CategoryTreeManager(db).delete(category_id)
        return {
            "message": f"Category '{name}' deleted successfully",
            "id": category_id
        }

    except DirectoryError as e:
        logger.warning(f"Category {category_id} not deleted: {e.message}")
        raise to_http_exception(e)
    except Exception as e:
        db.rollback()
        logger.error(f"Unexpected error deleting category: {str(e)}", exc_info=True)
        raise unexpected_http_exception(e)
