import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

# Load env from arcade/.env
arcade_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(arcade_dir, ".env"))

from arcade.core.config import settings, validate_config
from arcade.core.database import create_all_tables, init_engine
from arcade.core.logging import configure_logging
from arcade.core.middleware.request_id import RequestIdMiddleware
from arcade.core.validation import validate_env
from arcade.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from arcade.api import credits, health, saves

configure_logging(settings.ENV)
validate_env()
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("arcade")
    logger.info("Starting arcade credits service...")
    app.state.startup_time = time.time()
    if settings.DATABASE_URL:
        create_all_tables(init_engine(settings.DATABASE_URL))
    else:
        logger.warning("DATABASE_URL not set; storage-backed routes will fail")
    try:
        yield
    finally:
        logging.getLogger("arcade").info("Stopping arcade credits service...")


app = FastAPI(title="Arcade Credits", lifespan=lifespan)

# Middlewares
app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(credits.router, prefix="/api")
app.include_router(saves.router, prefix="/api")
app.include_router(health.router)
