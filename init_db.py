"""
Database initialization script
Creates all tables and bootstraps the administrator account from the environment
"""
import os
import logging
from dotenv import load_dotenv
from app.database import engine, Base, SessionLocal
from app.models import User, Category, Business, Ad  # noqa: F401
from app.models.user import ROLE_ADMIN
from app.core.security import hash_password

load_dotenv()

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def create_admin(db) -> None:
    """Create the admin account if ADMIN_EMAIL/ADMIN_PASSWORD are set and it does not exist yet"""
    email = os.getenv("ADMIN_EMAIL")
    password = os.getenv("ADMIN_PASSWORD")
    if not email or not password:
        logger.info("ADMIN_EMAIL/ADMIN_PASSWORD not set, skipping admin bootstrap")
        return

    if db.query(User).filter(User.email == email).first():
        logger.info(f"Admin {email} already exists")
        return

    db.add(User(
        email=email,
        name=os.getenv("ADMIN_NAME", "Administrator"),
        hashed_password=hash_password(password),
        role=ROLE_ADMIN
    ))
    db.commit()
    logger.info(f"Admin account {email} created")


def init_db():
    """Initialize database with all tables"""
    try:
        logger.info("Creating all database tables...")
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created successfully")

        db = SessionLocal()
        try:
            create_admin(db)
        finally:
            db.close()

        logger.info("Database initialization complete. You can now start the FastAPI server.")

    except Exception as e:
        logger.error(f"Error initializing database: {str(e)}")
        raise


if __name__ == "__main__":
    init_db()
