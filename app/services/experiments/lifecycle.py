import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, get_settings
from app.models.experiment import ABTest, ABTestStatus, ABTestVariant
from app.models.schemas import ABTestStatusEnum, CreateABTestRequest
from app.services.experiments.allocation import check_split, validate_traffic
from app.services.experiments.errors import (
    InvalidRequestError,
    TestNotFoundError,
    TrafficConfigurationError,
    VariantNotFoundError,
)
from app.services.experiments.repository import AllocationStore, ConversionStore, TestStore

logger = structlog.get_logger(__name__)


@dataclass
class CleanupResult:
    conversions_deleted: int
    allocations_deleted: int
    cutoff: datetime


class TestLifecycleManager:
    """Creates tests with their variants, moves them through statuses, retires old data."""

    __test__ = False

    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()
        self.tests = TestStore(db)

    async def create_test(self, landing_page_id: str, config: CreateABTestRequest) -> ABTest:
        validate_traffic(config.variants)

        controls = [v for v in config.variants if v.is_control]
        if len(controls) > 1:
            raise TrafficConfigurationError("At most one variant may be marked as control")
        if not controls:
            logger.warning(
                "control_variant_missing",
                landing_page_id=landing_page_id,
                fallback_variant=config.variants[0].name,
            )

        test = ABTest(
            id=str(uuid.uuid4()),
            landing_page_id=landing_page_id,
            name=config.name,
            description=config.description,
            status=ABTestStatus(config.status.value),
            start_date=config.start_date,
            end_date=config.end_date,
            confidence_level=config.confidence_level or self.settings.AB_DEFAULT_CONFIDENCE_LEVEL,
            min_sample_size=config.min_sample_size or self.settings.AB_DEFAULT_MIN_SAMPLE_SIZE,
            goals=[goal.model_dump(mode="json") for goal in config.goals],
            metadata_=config.metadata,
        )
        if test.status == ABTestStatus.RUNNING and test.start_date is None:
            test.start_date = datetime.now(timezone.utc)

        for position, variant in enumerate(config.variants):
            test.variants.append(
                ABTestVariant(
                    id=str(uuid.uuid4()),
                    name=variant.name,
                    template_id=variant.template_id,
                    traffic_percentage=variant.traffic_percentage,
                    is_control=variant.is_control,
                    position=position,
                )
            )

        # Test and variants land in one transaction
        self.db.add(test)
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            logger.error("ab_test_create_failed", landing_page_id=landing_page_id)
            raise

        logger.info(
            "ab_test_created",
            test_id=test.id,
            landing_page_id=landing_page_id,
            variant_count=len(test.variants),
        )
        return await self.get_test(test.id)

    async def get_test(self, test_id: str) -> ABTest:
        test = await self.tests.get_test(test_id)
        if not test:
            raise TestNotFoundError(test_id)
        return test

    async def update_status(self, test_id: str, status: ABTestStatusEnum) -> ABTest:
        """
        Set the status. Any transition is accepted; ordering such as
        draft -> running is the caller's responsibility.
        """
        test = await self.get_test(test_id)
        new_status = ABTestStatus(status.value)
        now = datetime.now(timezone.utc)

        if new_status == ABTestStatus.RUNNING:
            validate_traffic(test.variants, test_id)
            if test.start_date is None:
                test.start_date = now
        if new_status == ABTestStatus.COMPLETED and test.end_date is None:
            test.end_date = now

        previous = test.status
        test.status = new_status
        await self.db.commit()

        logger.info(
            "ab_test_status_updated",
            test_id=test_id,
            previous_status=previous.value,
            status=new_status.value,
        )
        return await self.get_test(test_id)

    async def get_active_tests_for_page(self, landing_page_id: str) -> List[ABTest]:
        return await self.tests.list_running_for_page(landing_page_id)

    async def rebalance_traffic(self, test_id: str, traffic: Dict[str, int]) -> ABTest:
        """
        Replace the traffic split. Visitors already allocated keep their
        variant; only new visitors see the new split.
        """
        test = await self.get_test(test_id)
        by_id = {v.id: v for v in test.variants}

        unknown = [variant_id for variant_id in traffic if variant_id not in by_id]
        if unknown:
            raise VariantNotFoundError(unknown[0], test_id)

        check_split([traffic.get(v.id, v.traffic_percentage) for v in test.variants], test_id)

        for variant_id, pct in traffic.items():
            by_id[variant_id].traffic_percentage = pct
        await self.db.commit()

        logger.info("ab_test_traffic_rebalanced", test_id=test_id, traffic=traffic)
        return await self.get_test(test_id)

    async def delete_test(self, test_id: str) -> None:
        await self.get_test(test_id)

        try:
            await self.tests.delete_test_rows(test_id)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info("ab_test_deleted", test_id=test_id)

    async def cleanup(
        self, days_to_keep: Optional[int] = None, batch_size: Optional[int] = None
    ) -> CleanupResult:
        """
        Delete conversions, then allocations, older than the retention window.

        Each batch commits on its own so no long-lived lock is held against
        concurrent allocation and conversion writes.
        """
        if days_to_keep is None:
            days_to_keep = self.settings.AB_RETENTION_DAYS
        if batch_size is None:
            batch_size = self.settings.AB_CLEANUP_BATCH_SIZE
        if days_to_keep < 0:
            raise InvalidRequestError("days_to_keep must be >= 0", "days_to_keep")
        if batch_size < 1:
            raise InvalidRequestError("batch_size must be >= 1", "batch_size")

        cutoff = datetime.now(timezone.utc) - timedelta(days=days_to_keep)
        conversions = ConversionStore(self.db)
        allocations = AllocationStore(self.db)

        conversions_deleted = 0
        while True:
            deleted = await conversions.delete_batch_before(cutoff, batch_size)
            await self.db.commit()
            conversions_deleted += deleted
            if deleted < batch_size:
                break

        allocations_deleted = 0
        while True:
            deleted = await allocations.delete_batch_before(cutoff, batch_size)
            await self.db.commit()
            allocations_deleted += deleted
            if deleted < batch_size:
                break

        logger.info(
            "ab_test_cleanup_completed",
            conversions_deleted=conversions_deleted,
            allocations_deleted=allocations_deleted,
            cutoff=cutoff.isoformat(),
        )
        return CleanupResult(
            conversions_deleted=conversions_deleted,
            allocations_deleted=allocations_deleted,
            cutoff=cutoff,
        )
