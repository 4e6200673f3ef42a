"""Monthly usage reset job, for schedulers that run a command instead of calling /api/reset-usage."""
from datetime import datetime, timezone
import logging

from texttools.core.config import settings
from texttools.core.logging import configure_logging
from texttools.features.usage.service import reset_all_usage

logger = logging.getLogger("texttools.workers.reset_usage")


def run_monthly_reset() -> dict:
    started_at = datetime.now(timezone.utc)
    count = reset_all_usage()
    logger.info(
        "[reset] monthly usage reset",
        extra={"records_reset": count, "started_at": started_at.isoformat()},
    )
    return {"records_reset": count, "started_at": started_at.isoformat()}


if __name__ == "__main__":
    configure_logging(settings.ENV)
    run_monthly_reset()
