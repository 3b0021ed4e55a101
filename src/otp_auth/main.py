"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from otp_auth.api.router import router as mobile_auth_router
from otp_auth.config import settings
from otp_auth.database.engine import init_db

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle hook."""
    logger.info("Starting %s …", settings.app_name)
    if settings.challenge_backend == "sql":
        await init_db()
        logger.info("Database initialised")
    yield
    logger.info("Shutting down %s …", settings.app_name)


app = FastAPI(
    title=settings.app_name,
    description="Phone-number one-time-passcode sign-in service",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(mobile_auth_router)


@app.get("/health")
async def health_check():
    """Simple liveness probe."""
    return {"status": "healthy", "app": settings.app_name}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("otp_auth.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
