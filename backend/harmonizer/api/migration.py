"""Loan migration API endpoints.

Pre-flight validation, on-demand harmonization runs (dry run by default) and
post-run verification.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from harmonizer.config import MigrationConfig
from harmonizer.database import async_session, get_db
from harmonizer.schemas import (
    MigrationRunRequest,
    MigrationRunResponse,
    ValidationResponse,
    VerificationResponse,
)
from harmonizer.services.migration import batch_driver, report, validation

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/validate", response_model=ValidationResponse)
async def validate_endpoint(db: AsyncSession = Depends(get_db)):
    return await validation.validate_prerequisites(db)


@router.post("/run", response_model=MigrationRunResponse)
async def run_endpoint(data: MigrationRunRequest):
    config = MigrationConfig.from_settings(
        dry_run=data.dry_run,
        tenant_id=data.tenant_id,
        batch_size=data.batch_size,
    )
    try:
        if not config.dry_run:
            async with async_session() as db:
                await validation.ensure_prerequisites(db)
        results = await batch_driver.run_migration(async_session, config)
    except batch_driver.PrerequisiteError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except batch_driver.MigrationError as e:
        logger.error("Migration run failed: %s", e)
        raise HTTPException(status_code=500, detail=str(e))

    run_report = report.build_report(config, results)
    report.write_report(run_report, config.report_dir)
    return run_report


@router.get("/verify", response_model=VerificationResponse)
async def verify_endpoint(
    tenant_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    return await validation.verify_migration(db, tenant_id)
