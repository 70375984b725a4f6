import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

# Load env from the working directory's .env (skipped under pytest)
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from crave.core.config import settings, validate_config
from crave.core.logging import configure_logging
from crave.core.middleware.request_id import RequestIdMiddleware
from crave.core.middleware.metrics import MetricsMiddleware
from crave.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from crave.core.database import create_all_tables
from crave.features.catalog.service import seed_catalog
from crave.api import economy, health, levels, metrics, rewards, shop, streaks

configure_logging(settings.ENV, level=settings.LOG_LEVEL)
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("crave")
    logger.info("Starting crave rewards service...")
    app.state.startup_time = time.time()
    if settings.AUTO_CREATE_TABLES:
        create_all_tables()
        seed_catalog()
    try:
        yield
    finally:
        logging.getLogger("crave").info("Stopping crave rewards service...")


app = FastAPI(title="Crave - Reward Economy", lifespan=lifespan)

# Middlewares
app.add_middleware(RequestIdMiddleware)
app.add_middleware(MetricsMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(StarletteHTTPException, http_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(shop.router)
app.include_router(rewards.router)
app.include_router(levels.router)
app.include_router(streaks.router)
app.include_router(economy.router)
app.include_router(health.router)
app.include_router(metrics.router)
