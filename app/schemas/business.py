from pydantic import BaseModel, EmailStr, Field
from typing import Optional
from datetime import datetime


class BusinessBase(BaseModel):
    name: str = Field(..., min_length=2, max_length=200, description="Business name (required)")
    description: Optional[str] = Field(None, description="Business description (optional)")
    phone_number: Optional[str] = Field(None, max_length=20, description="Phone number (optional)")
    email: Optional[EmailStr] = Field(None, description="Contact email (optional)")
    address: Optional[str] = Field(None, description="Business address (optional)")
    city: Optional[str] = Field(None, max_length=100, description="City (optional)")
    category_id: Optional[int] = Field(None, description="Directory category (optional)")


class BusinessCreate(BusinessBase):
    pass


class BusinessUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=200)
    description: Optional[str] = None
    phone_number: Optional[str] = Field(None, max_length=20)
    email: Optional[EmailStr] = None
    address: Optional[str] = None
    city: Optional[str] = Field(None, max_length=100)
    category_id: Optional[int] = None
    is_active: Optional[bool] = None


class BusinessResponse(BaseModel):
    id: int
    name: str
    slug: str
    description: Optional[str] = None
    phone_number: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    category_id: Optional[int] = None
    owner_id: int
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
