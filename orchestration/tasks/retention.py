from typing import Optional

from prefect import task
from prefect.logging import get_run_logger

from app.config import Settings, get_settings
from app.core.database import Database
from app.services.experiments.lifecycle import CleanupResult, TestLifecycleManager


async def purge_expired_records(
    database: Database,
    settings: Settings,
    days_to_keep: Optional[int] = None,
    batch_size: Optional[int] = None,
) -> CleanupResult:
    async with database.session() as session:
        manager = TestLifecycleManager(session, settings)
        return await manager.cleanup(days_to_keep, batch_size)


@task(name="purge_expired_ab_test_records")
async def purge_expired_ab_test_records(
    database_url: str,
    days_to_keep: Optional[int] = None,
    batch_size: Optional[int] = None,
) -> dict:
    logger = get_run_logger()

    database = Database(database_url)
    try:
        result = await purge_expired_records(database, get_settings(), days_to_keep, batch_size)
    finally:
        await database.dispose()

    logger.info(
        f"Deleted {result.conversions_deleted} conversions and "
        f"{result.allocations_deleted} allocations older than {result.cutoff.isoformat()}"
    )
    return {
        "conversions_deleted": result.conversions_deleted,
        "allocations_deleted": result.allocations_deleted,
        "cutoff": result.cutoff.isoformat(),
    }
