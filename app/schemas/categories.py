from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime


class CategoryBase(BaseModel):
    """Base schema for category data"""
    name: str = Field(..., min_length=1, max_length=100, description="Category name")
    description: Optional[str] = Field(None, max_length=500, description="Category description")
    parent_id: Optional[int] = Field(None, description="Parent category ID (omit for a root category)")
    image_url: Optional[str] = Field(None, max_length=500, description="Category image URL")


class CategoryCreate(CategoryBase):
    """Schema for creating a new category"""
    sort_order: int = Field(0, description="Display order among siblings")
    is_active: bool = True


class CategoryUpdate(BaseModel):
    """Schema for updating an existing category; only the fields sent are changed"""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    parent_id: Optional[int] = None
    image_url: Optional[str] = Field(None, max_length=500)
    sort_order: Optional[int] = None
    is_active: Optional[bool] = None


class CategoryChild(BaseModel):
    id: int
    name: str
    slug: str

    class Config:
        from_attributes = True


class CategoryBusiness(BaseModel):
    id: int
    name: str
    slug: str

    class Config:
        from_attributes = True


class CategoryResponse(BaseModel):
    """Schema for category response"""
    id: int = Field(..., description="Category ID")
    name: str
    slug: str
    description: Optional[str] = None
    parent_id: Optional[int] = None
    image_url: Optional[str] = None
    sort_order: int = 0
    is_active: bool = True
    created_at: datetime
    updated_at: datetime
    children: List[CategoryChild] = []

    class Config:
        from_attributes = True


class CategoryListItem(CategoryResponse):
    business_count: int = 0


class CategoryDetail(CategoryResponse):
    businesses: List[CategoryBusiness] = []
