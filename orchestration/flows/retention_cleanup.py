from datetime import datetime, timezone
from typing import Optional

from prefect import flow, get_run_logger

from app.config import get_settings
from orchestration.tasks.retention import purge_expired_ab_test_records


@flow(name="ab_test_retention_cleanup", log_prints=True)
async def ab_test_retention_cleanup(
    days_to_keep: Optional[int] = None,
    batch_size: Optional[int] = None,
    database_url: Optional[str] = None,
):
    logger = get_run_logger()
    logger.info(f"Starting A/B test retention cleanup at {datetime.now(timezone.utc).isoformat()}")

    settings = get_settings()
    result = await purge_expired_ab_test_records(
        database_url or settings.DATABASE_URL,
        days_to_keep if days_to_keep is not None else settings.AB_RETENTION_DAYS,
        batch_size,
    )

    logger.info("A/B test retention cleanup completed")
    return result


if __name__ == "__main__":
    import asyncio

    asyncio.run(ab_test_retention_cleanup())
