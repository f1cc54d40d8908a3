from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.database import Base, engine

# import models so they are registered on the metadata
import app.models.user  # noqa: F401
import app.models.categories  # noqa: F401
import app.models.business  # noqa: F401
import app.models.ads  # noqa: F401

from app.routes.user import router as users_router
from app.routes.business import router as business_router
from app.routes.categories import router as categories_router
from app.routes.ads import router as ads_router

app = FastAPI(title="Business Directory API")

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins for development
    allow_credentials=True,
    allow_methods=["*"],  # Allows all methods
    allow_headers=["*"],  # Allows all headers
)

# Create tables (after models are imported)
Base.metadata.create_all(bind=engine)

app.include_router(users_router, prefix="/api/users", tags=["users"])
app.include_router(business_router, prefix="/api/business", tags=["business"])
app.include_router(categories_router, prefix="/api/categories", tags=["categories"])
app.include_router(ads_router, prefix="/api/ads", tags=["ads"])


@app.get("/")
def read_root():
    return {"status": "ok"}
