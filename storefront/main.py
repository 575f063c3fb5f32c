import logging
from fastapi import FastAPI
from contextlib import asynccontextmanager
from storefront.core.config import settings
from storefront.db.session import create_db_and_tables

# Import models to ensure they are registered with SQLModel metadata
import storefront.models  # noqa: F401

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

@asynccontextmanager
async def lifespan(app: FastAPI):
    create_db_and_tables()
    yield

app = FastAPI(
    title=settings.PROJECT_NAME,
    version="1.0.0",
    lifespan=lifespan,
    description="Storefront API: promotions and checkout"
)

@app.get("/")
def read_root():
    return {"message": f"Welcome to {settings.PROJECT_NAME}. Visit /docs for Swagger UI."}

from storefront.routers import promotions, orders, admin

app.include_router(promotions.router, prefix="/api/v1/promotions", tags=["promotions"])
app.include_router(orders.router, prefix="/api/v1/orders", tags=["orders"])
app.include_router(admin.router, prefix="/api/v1/admin", tags=["admin"])

# Add CORS
from fastapi.middleware.cors import CORSMiddleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
