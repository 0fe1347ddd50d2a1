"""Loan Harmonizer - FastAPI Entry Point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from harmonizer.config import settings
from harmonizer.database import engine
from harmonizer.api import migration

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Schema changes ship as Alembic revisions; only the pool is managed here."""
    logger.info("Loan harmonizer API starting (%s)", settings.environment)
    yield
    await engine.dispose()


app = FastAPI(
    title="Loan Harmonizer API",
    description="Balance reconciliation, journal backfill and status mapping for legacy loans",
    version=VERSION,
    lifespan=lifespan,
)

# Routers
app.include_router(migration.router, prefix="/api/migration", tags=["Loan Migration"])


@app.get("/api/health")
async def health_check():
    return {"status": "healthy", "service": "loan-harmonizer", "version": VERSION}
