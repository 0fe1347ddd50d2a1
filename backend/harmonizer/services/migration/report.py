"""JSON run report written after each harmonization run."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from harmonizer.config import MigrationConfig
from harmonizer.services.migration.batch_driver import MigrationResults

logger = logging.getLogger(__name__)


def build_summary(results: MigrationResults) -> dict[str, Any]:
    if results.total:
        success_rate = f"{results.successful / results.total * 100:.2f}%"
    else:
        success_rate = "0.00%"
    if results.successful:
        avg_entries = f"{results.journal_entries_created / results.successful:.2f}"
    else:
        avg_entries = "0.00"
    return {
        "successRate": success_rate,
        "averageJournalEntriesPerLoan": avg_entries,
        "statusChangeCount": sum(results.status_changes.values()),
    }


def build_report(
    config: MigrationConfig,
    results: MigrationResults,
    timestamp: datetime | None = None,
) -> dict[str, Any]:
    timestamp = timestamp or datetime.now(timezone.utc)
    return {
        "timestamp": timestamp.isoformat(),
        "config": config.model_dump(mode="json"),
        "results": results.to_dict(),
        "summary": build_summary(results),
    }


def report_filename(timestamp: datetime) -> str:
    return f"migration-report-{timestamp:%Y-%m-%d}.json"


def write_report(report: dict[str, Any], report_dir: str | Path) -> Path:
    """Write *report* under *report_dir*; a same-day report is overwritten."""
    timestamp = datetime.fromisoformat(report["timestamp"])
    directory = Path(report_dir)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / report_filename(timestamp)
    path.write_text(json.dumps(report, indent=2, default=str), encoding="utf-8")
    logger.info("Migration report written to %s", path)
    return path
