import os
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT_DIR))

os.environ["DATABASE_URL"] = "sqlite:///./test_directory.db"
os.environ.setdefault("JWT_SECRET_KEY", "test-access-secret-0123456789abcdef0123")
os.environ.setdefault("JWT_REFRESH_SECRET_KEY", "test-refresh-secret-0123456789abcdef012")

import pytest
from fastapi.testclient import TestClient

from app.core.dependencies import get_storage_service
from app.core.security import create_access_token, hash_password
from app.database import Base, SessionLocal, engine
from app.models import Business, User
from main import app


class FakeStorage:
    """In-memory stand-in for the GCS storage service"""

    def __init__(self):
        self.uploaded = []
        self.deleted = []
        self.fail_deletes = False

    def upload_bytes(self, content: bytes, filename: str, folder: str) -> dict:
        handle = f"{folder}/{len(self.uploaded) + 1}_{filename}"
        self.uploaded.append(handle)
        return {"url": f"https://cdn.test/{handle}", "handle": handle}

    def delete_image(self, image_url: str) -> bool:
        if self.fail_deletes:
            raise RuntimeError("bucket unreachable")
        self.deleted.append(image_url)
        return True


@pytest.fixture()
def db_session():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def storage():
    return FakeStorage()


@pytest.fixture()
def client(db_session, storage):
    app.dependency_overrides[get_storage_service] = lambda: storage
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def make_user(db_session):
    counter = {"n": 0}

    def _make_user(role: str = "user", email: str = None, password: str = "password123") -> User:
        counter["n"] += 1
        user = User(
            name=f"{role.title()} {counter['n']}",
            email=email or f"{role}{counter['n']}@example.com",
            hashed_password=hash_password(password),
            role=role,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture()
def make_business(db_session):
    def _make_business(owner: User, name: str = "Corner Cafe", category_id: int = None) -> Business:
        business = Business(
            name=name,
            slug=f"{name.lower().replace(' ', '-')}-{owner.id}",
            owner_id=owner.id,
            category_id=category_id,
        )
        db_session.add(business)
        db_session.commit()
        db_session.refresh(business)
        return business

    return _make_business


def auth_headers(user: User) -> dict:
    token = create_access_token({"sub": str(user.id), "role": user.role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def admin(make_user):
    return make_user("admin")


@pytest.fixture()
def owner(make_user):
    return make_user("owner")


@pytest.fixture()
def admin_headers(admin):
    return auth_headers(admin)


@pytest.fixture()
def owner_headers(owner):
    return auth_headers(owner)
