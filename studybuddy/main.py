import asyncio
import logging
import os
import time
from contextlib import asynccontextmanager, suppress

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

# Load env from the working directory before settings are read
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from studybuddy import __version__
from studybuddy.core.config import settings, validate_config
from studybuddy.core.database import create_all_tables, dispose_engine
from studybuddy.core.logging import configure_logging
from studybuddy.core.middleware.request_id import RequestIdMiddleware
from studybuddy.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from studybuddy.features.tiers.service import get_catalog_provider, seed_catalog
from studybuddy.api import admin, config, features, health, upgrade, usage


logger = logging.getLogger("studybuddy")


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.ENV)
    validate_config(strict=settings.CONFIG_STRICT)
    logger.info("Starting StudyBuddy config service...")
    app.state.startup_time = time.time()

    try:
        create_all_tables()
        seed_catalog()
    except SQLAlchemyError as e:
        # The catalog loader falls back to the default tier; keep serving
        logger.error(f"[startup] database bootstrap failed: {e}")

    provider = get_catalog_provider()
    provider.refresh()
    refresh_task = asyncio.create_task(provider.run_refresh_loop())
    try:
        yield
    finally:
        refresh_task.cancel()
        with suppress(asyncio.CancelledError):
            await refresh_task
        dispose_engine()
        logger.info("Stopping StudyBuddy config service...")


app = FastAPI(title="StudyBuddy - Tier & Usage Config", version=__version__, lifespan=lifespan)

# Middlewares
app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.root_router, tags=["health"])
app.include_router(config.router)
app.include_router(usage.router)
app.include_router(features.router)
app.include_router(upgrade.router)
app.include_router(admin.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("studybuddy.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
