from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from reco.api.routes import chat, conversations, demo, health, research, reviews
from reco.core.config import settings
from reco.core.logging import configure_logging, get_logger
from reco.db.session import engine

configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # pgvector must exist before any review query runs
    async with engine.begin() as conn:
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
    logger.info(f"{settings.PROJECT_NAME} is starting up...")
    yield
    await engine.dispose()
    logger.info(f"{settings.PROJECT_NAME} is shutting down...")


app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan,
)

# CORS configuration (the widget is embedded on storefront domains)
allowed_origins = ["http://localhost:5173", "http://localhost:3000"]
if settings.ALLOWED_ORIGINS and settings.ALLOWED_ORIGINS != "*":
    allowed_origins = [origin.strip() for origin in settings.ALLOWED_ORIGINS.split(",")] + allowed_origins
elif settings.ALLOWED_ORIGINS == "*":
    allowed_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=allowed_origins != ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health, tags=["Health"])
app.include_router(chat, prefix=f"{settings.API_V1_STR}/chat", tags=["Chat"])
app.include_router(research, prefix=f"{settings.API_V1_STR}/research", tags=["Research"])
app.include_router(conversations, prefix=f"{settings.API_V1_STR}/conversations", tags=["Conversations"])
app.include_router(reviews, prefix=f"{settings.API_V1_STR}/reviews", tags=["Reviews"])
app.include_router(demo, prefix=settings.API_V1_STR, tags=["Demo"])
