import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from sqlalchemy import text

from photobooth.routers import ledger, video
from photobooth.core.redis import RedisClient
from photobooth.core.config import settings
from photobooth.core.database import Base, engine
from photobooth.core.deps import build_services
from photobooth.core.s3 import get_s3_client
from photobooth.models.video_task import VideoTask  # noqa: F401  registers the table

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    logger.info("Starting Photobooth API (environment: %s)", settings.APP_ENV)

    try:
        Base.metadata.create_all(bind=engine)
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("  [OK]   Database")
    except Exception as e:
        logger.error("  [FAIL] Database  - %s", e)

    try:
        RedisClient.get_client().ping()
        logger.info("  [OK]   Redis     (%s:%s)", settings.REDIS_HOST, settings.REDIS_PORT)
    except Exception as e:
        logger.error("  [FAIL] Redis     - %s", e)

    try:
        get_s3_client().head_bucket(Bucket=settings.AWS_S3_BUCKET)
        logger.info("  [OK]   S3        (%s)", settings.AWS_S3_BUCKET)
    except Exception as e:
        logger.error("  [FAIL] S3        - %s", e)

    if settings.PROVIDER_API_KEY:
        logger.info("  [OK]   Provider  (%s)", settings.provider_base_url)
    else:
        logger.error("  [FAIL] Provider  - PROVIDER_API_KEY is not set")

    app.state.services = build_services()
    logger.info("Photobooth API is ready")
    yield

    logger.info("Shutting down Photobooth API...")
    await app.state.services.aclose()
    try:
        RedisClient.close()
    except Exception as e:
        logger.warning("Redis close failed: %s", e)


is_production = settings.APP_ENV == "production"

app = FastAPI(
    title="Photobooth API",
    lifespan=lifespan,
    docs_url=None if is_production else "/docs",
    redoc_url=None if is_production else "/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
def health_check():
    return {"status": True}


app.include_router(ledger.router)
app.include_router(video.router)
