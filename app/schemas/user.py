from pydantic import BaseModel, Field, EmailStr
from typing import Optional
from datetime import datetime


class UserLogin(BaseModel):
    email: EmailStr = Field(..., description="User email address")
    password: str = Field(..., description="User password")

    class Config:
        json_schema_extra = {
            "example": {
                "email": "owner@example.com",
                "password": "myPassword123"
            }
        }


class UserBase(BaseModel):
    email: EmailStr = Field(..., description="User email address")
    name: str = Field(
        min_length=2,
        max_length=100,
        description="Display name (2-100 characters)"
    )


class UserCreate(UserBase):
    password: str = Field(
        min_length=8,
        description="Password (minimum 8 characters)",
        examples=["myPassword123", "SecurePass456!"],
    )
    role: str = Field("user", description="owner or user")

    class Config:
        json_schema_extra = {
            "example": {
                "email": "owner@example.com",
                "name": "Jane Doe",
                "password": "myPassword123",
                "role": "owner"
            }
        }


class User(UserBase):
    id: int
    role: str
    is_active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class TokenWithRefresh(Token):
    refresh_token: str


class RefreshTokenRequest(BaseModel):
    refresh_token: str

    class Config:
        json_schema_extra = {
            "example": {"refresh_token": "<your_refresh_token_here>"}
        }


class AdminUserCreate(UserBase):
    """Account created by an administrator; any role, admin included"""
    password: str = Field(min_length=8, description="Password (minimum 8 characters)")
    role: str = Field("user", description="admin, owner or user")
    is_active: bool = True


class UserSelfUpdate(BaseModel):
    """Fields a user may change on their own account"""
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    password: Optional[str] = Field(None, min_length=8)


class UserAdminUpdate(UserSelfUpdate):
    """Fields an administrator may change on any account"""
    role: Optional[str] = Field(None, description="admin, owner or user")
    is_active: Optional[bool] = None

    class Config:
        json_schema_extra = {
            "example": {"role": "owner", "is_active": False}
        }
