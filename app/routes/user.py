from fastapi import APIRouter, Depends, HTTPException, Query, status
from typing import List, Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
import logging
from app.database import get_db
from app.models.business import Business
from app.models.user import ALL_ROLES, ROLE_ADMIN, ROLE_OWNER, ROLE_USER, User
from app.schemas.user import (
    AdminUserCreate,
    RefreshTokenRequest,
    TokenWithRefresh,
    User as UserSchema,
    UserAdminUpdate,
    UserCreate,
    UserLogin,
    UserSelfUpdate,
)
from app.core.security import (
    create_access_token,
    create_refresh_token,
    decode_token,
    hash_password,
    is_refresh_token,
    verify_password,
)
from app.core.dependencies import get_current_user, require_role
from app.core.errors import (
    ConflictError,
    DirectoryError,
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
    to_http_exception,
    unexpected_http_exception,
)

router = APIRouter(tags=["users"])
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _issue_tokens(user_id, role: str) -> dict:
    claims = {"sub": str(user_id), "role": role}
    return {
        "access_token": create_access_token(claims),
        "token_type": "bearer",
        "refresh_token": create_refresh_token(claims),
    }


@router.post("/register", response_model=UserSchema, status_code=status.HTTP_201_CREATED)
async def register_user(user: UserCreate, db: Session = Depends(get_db)):
    """
    Register a business owner or a regular user.

    Administrators are never created through this endpoint; see init_db.py.
    """
    try:
        role = user.role.strip().lower()
        if role not in (ROLE_OWNER, ROLE_USER):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={
                    "error": "ValidationError",
                    "message": "role must be 'owner' or 'user'",
                    "type": "invalid_input",
                    "field": "role"
                }
            )

        db_user = db.query(User).filter(User.email == user.email).first()
        if db_user:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={
                    "error": "ValidationError",
                    "message": "Email already registered",
                    "type": "invalid_input",
                    "field": "email"
                }
            )

        logger.info(f"Registering {role} account for {user.email}")
        db_user = User(
            email=user.email,
            name=user.name.strip(),
            hashed_password=hash_password(user.password),
            role=role
        )
        db.add(db_user)
        db.commit()
        db.refresh(db_user)
        return db_user

    except HTTPException:
        raise
    except IntegrityError as e:
        db.rollback()
        logger.error(f"Integrity error registering {user.email}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": "ValidationError",
                "message": "Email already registered",
                "type": "invalid_input",
                "field": "email"
            }
        )
    except Exception as e:
        db.rollback()
        logger.error(f"Unexpected error registering user: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "UnexpectedError",
                "message": "An unexpected error occurred while registering",
                "type": "internal_error"
            }
        )


@router.post("/auth", response_model=TokenWithRefresh)
async def authenticate_user(userdetails: UserLogin, db: Session = Depends(get_db)):
    logger.info(f"Authenticating user with email: {userdetails.email}")
    db_user = db.query(User).filter(User.email == userdetails.email).first()
    if not db_user or not verify_password(userdetails.password, db_user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials"
        )
    if not db_user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account is disabled"
        )

    return _issue_tokens(db_user.id, db_user.role)


@router.post("/refresh", response_model=TokenWithRefresh)
async def refresh_token(request: RefreshTokenRequest, db: Session = Depends(get_db)):
    if not is_refresh_token(request.refresh_token):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired refresh token")

    payload = decode_token(request.refresh_token, refresh=True)
    user_id = payload.get("sub")

    # Role is re-read so a changed or disabled account does not keep old claims
    db_user = db.query(User).filter(User.id == int(user_id)).first() if user_id else None
    if not db_user or not db_user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found or inactive")

    return _issue_tokens(db_user.id, db_user.role)


@router.get("/me", response_model=UserSchema)
def get_me(current_user: User = Depends(get_current_user)):
    """Profile of the authenticated user"""
    return current_user


def _clean_role(role: str) -> str:
    role = (role or "").strip().lower()
    if role not in ALL_ROLES:
        raise InvalidInputError(f"role must be one of: {', '.join(ALL_ROLES)}", field="role")
    return role


def _get_user_or_404(db: Session, user_id: int) -> User:
    db_user = db.query(User).filter(User.id == user_id).first()
    if db_user is None:
        raise NotFoundError(f"User with ID {user_id} not found")
    return db_user


def _email_taken(db: Session, email: str) -> None:
    if db.query(User.id).filter(User.email == email).first():
        raise InvalidInputError("Email already registered", field="email")


@router.post("", response_model=UserSchema, status_code=status.HTTP_201_CREATED)
async def create_user(
    user: AdminUserCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_role(["admin"]))
):
    """Create an account with any role, admin included - admin only"""
    try:
        role = _clean_role(user.role)
        _email_taken(db, user.email)

        db_user = User(
            email=user.email,
            name=user.name.strip(),
            hashed_password=hash_password(user.password),
            role=role,
            is_active=user.is_active
        )
        db.add(db_user)
        db.commit()
        db.refresh(db_user)
        logger.info(f"Admin {current_user.id} created {role} account {db_user.id} ({db_user.email})")
        return db_user

    except DirectoryError as e:
        raise to_http_exception(e)
    except IntegrityError as e:
        db.rollback()
        logger.error(f"Integrity error creating user {user.email}: {str(e)}")
        raise to_http_exception(InvalidInputError("Email already registered", field="email"))
    except Exception as e:
        db.rollback()
        logger.error(f"Unexpected error creating user: {str(e)}", exc_info=True)
        raise unexpected_http_exception(e)


@router.get("", response_model=List[UserSchema])
def get_users(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    role: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_role(["admin"]))
):
    """All users, optionally filtered by role - admin only"""
    try:
        query = db.query(User)
        if role:
            query = query.filter(User.role == _clean_role(role))
        return query.order_by(User.id).offset(skip).limit(limit).all()

    except DirectoryError as e:
        raise to_http_exception(e)


@router.get("/{user_id}", response_model=UserSchema)
def get_user(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_role(["admin"]))
):
    """Get a specific user - admin only"""
    try:
        return _get_user_or_404(db, user_id)
    except DirectoryError as e:
        raise to_http_exception(e)


@router.put("/{user_id}", response_model=UserSchema)
def update_user(
    user_id: int,
    user_update: UserAdminUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Update a user. Users may change their own name and password; admins may
    also change any account's role and active flag.
    """
    try:
        if current_user.role != ROLE_ADMIN and current_user.id != user_id:
            raise ForbiddenError("You can only update your own profile")
        db_user = _get_user_or_404(db, user_id)

        if current_user.role == ROLE_ADMIN:
            fields = user_update.model_dump(exclude_unset=True)
        else:
            # role and is_active are not part of the self-service schema
            fields = UserSelfUpdate.model_validate(
                user_update.model_dump(exclude_unset=True)
            ).model_dump(exclude_unset=True)

        if fields.get("role") is not None:
            fields["role"] = _clean_role(fields["role"])
        if db_user.id == current_user.id and (
            fields.get("role") not in (None, ROLE_ADMIN) or fields.get("is_active") is False
        ):
            raise InvalidInputError("Administrators cannot demote or deactivate themselves", field="role")

        for field, value in fields.items():
            if value is None:
                continue
            if field == "password":
                db_user.hashed_password = hash_password(value)
            elif field == "name":
                db_user.name = value.strip()
            else:
                setattr(db_user, field, value)

        db.commit()
        db.refresh(db_user)
        logger.info(f"User {db_user.id} updated by user {current_user.id} ({current_user.role})")
        return db_user

    except DirectoryError as e:
        db.rollback()
        raise to_http_exception(e)
    except Exception as e:
        db.rollback()
        logger.error(f"Unexpected error updating user {user_id}: {str(e)}", exc_info=True)
        raise unexpected_http_exception(e)


@router.delete("/{user_id}", status_code=status.HTTP_200_OK)
def delete_user(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_role(["admin"]))
):
    """Delete a user - admin only; owners must have no businesses left"""
    try:
        if user_id == current_user.id:
            raise InvalidInputError("Administrators cannot delete their own account")
        db_user = _get_user_or_404(db, user_id)

        if db.query(Business.id).filter(Business.owner_id == user_id).first():
            raise ConflictError("User still owns businesses; delete them first")

        db.delete(db_user)
        db.commit()
        logger.info(f"User {user_id} deleted by admin {current_user.id}")
        return {"user_id": user_id, "detail": "deleted successfully"}

    except DirectoryError as e:
        raise to_http_exception(e)
    except Exception as e:
        db.rollback()
        logger.error(f"Unexpected error deleting user {user_id}: {str(e)}", exc_info=True)
        raise unexpected_http_exception(e)
