"""FastAPI app for the PM engine service."""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI

from .config import get_settings
from .observability import configure_logging, log_event
from .routes import _engine, router

settings = get_settings()
configure_logging(settings.log_level)
logger = logging.getLogger("pm_engine")


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Run the periodic PM jobs for the lifetime of the app."""
    if settings.scheduler_enabled:
        _engine.scheduler.start()
    else:
        log_event(logger, "pm_scheduler_disabled")
    try:
        yield
    finally:
        await _engine.scheduler.stop()


app = FastAPI(title=settings.service_name, version=settings.service_version, lifespan=lifespan)
app.include_router(router)
