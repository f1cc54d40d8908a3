from fastapi import Depends, HTTPException, status
from sqlalchemy.orm import Session
from app.database import get_db
from app.models.user import User
from app.core.security import verify_access_token
from app.services.storage_service import StorageService, storage_service


def get_current_user(
    token_payload: dict = Depends(verify_access_token),
    db: Session = Depends(get_db)
) -> User:
    """
    Dependency to get the current authenticated user from the database.
    Validates the bearer token and returns the User object.
    """
    user_id = token_payload.get("sub")

    user = db.query(User).filter(User.id == int(user_id)).first()
    if not user or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return user


def require_role(allowed_roles: list):
    """
    Dependency factory to check if the user has a required role.
    Usage: Depends(require_role(["admin", "owner"]))
    """
    def role_checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {', '.join(allowed_roles)}"
            )
        return current_user
    return role_checker


def get_storage_service() -> StorageService:
    """Asset store used by routes; None when GCS is not configured."""
    return storage_service
