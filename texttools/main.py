import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

# Load env from texttools/.env
package_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(package_dir, ".env"))

# Import after dotenv is loaded
from texttools.core.config import settings, validate_config
from texttools.core.database import create_all_tables
from texttools.core.logging import configure_logging
from texttools.core.middleware.request_id import RequestIdMiddleware
from texttools.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from texttools.api import billing, health, subscription

configure_logging(settings.ENV)
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("texttools")
    logger.info("Starting Text Tools backend...")
    app.state.startup_time = time.time()
    try:
        create_all_tables()
    except Exception as e:
        logger.error(f"[startup] could not prepare database tables: {e}")
    try:
        yield
    finally:
        logging.getLogger("texttools").info("Stopping Text Tools backend...")


app = FastAPI(title="Text Tools - Subscription Backend", lifespan=lifespan)

# Middlewares
app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# CORS (adjust origins in production)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(subscription.router, prefix="/api", tags=["subscription"])
app.include_router(billing.router, prefix="/api", tags=["billing"])
app.include_router(health.root_router, tags=["health"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("texttools.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
