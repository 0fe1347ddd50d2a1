"""Celery periodic task: harmonize loans still awaiting migration."""

import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from harmonizer.tasks import celery_app
from harmonizer.config import MigrationConfig, settings
from harmonizer.services.migration.batch_driver import run_migration
from harmonizer.services.migration.report import build_report, write_report
from harmonizer.services.migration.validation import ensure_prerequisites

logger = logging.getLogger(__name__)

__all__ = ["harmonize_pending_loans"]


def _get_async_session():
    engine = create_async_engine(settings.database_url)
    return engine, async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@celery_app.task(name="harmonizer.tasks.migration_tasks.harmonize_pending_loans")
def harmonize_pending_loans(tenant_id: str | None = None) -> dict:
    """Run a write-through migration and return the report summary.

    This runs as a synchronous Celery task that wraps an async inner function.
    """

    async def _run():
        engine, session_factory = _get_async_session()
        try:
            async with session_factory() as db:
                await ensure_prerequisites(db)
            config = MigrationConfig.from_settings(dry_run=False, tenant_id=tenant_id)
            results = await run_migration(session_factory, config)
            report = build_report(config, results)
            write_report(report, config.report_dir)
            return {"results": report["results"], "summary": report["summary"]}
        finally:
            await engine.dispose()

    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(_run())
    finally:
        loop.close()
