"""Deterministic, sticky assignment of visitors to test variants."""

import uuid
from typing import Optional, Sequence

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import mask_visitor
from app.models.experiment import ABTestAllocation, ABTestStatus, ABTestVariant
from app.services.experiments.errors import (
    InvalidRequestError,
    TestNotFoundError,
    TrafficConfigurationError,
)
from app.services.experiments.repository import AllocationStore, TestStore

logger = structlog.get_logger(__name__)

BUCKET_COUNT = 100


def visitor_hash(visitor_id: str) -> int:
    """
    32-bit rolling hash: h = (h << 5) - h + unit, two's complement wrap.

    Iterates UTF-16 code units, so characters outside the BMP contribute
    their surrogate pair. Result is a signed 32-bit integer.
    """
    encoded = visitor_id.encode("utf-16-le")
    h = 0
    for i in range(0, len(encoded), 2):
        unit = encoded[i] | (encoded[i + 1] << 8)
        h = ((h << 5) - h + unit) & 0xFFFFFFFF
    return h - 0x100000000 if h & 0x80000000 else h


def bucket_for(visitor_id: str) -> int:
    """Bucket in [0, 100). abs() is taken on the unbounded int, so -2**31 maps to 48."""
    return abs(visitor_hash(visitor_id)) % BUCKET_COUNT


def check_split(percentages: Sequence[int], test_id: Optional[str] = None) -> None:
    """Each share must lie in [0, 100] and the shares must sum to exactly 100."""
    if not percentages:
        raise TrafficConfigurationError("Test has no variants", test_id=test_id, total=0)

    total = sum(percentages)
    out_of_range = [pct for pct in percentages if not 0 <= pct <= 100]
    if out_of_range:
        raise TrafficConfigurationError(
            f"Traffic percentages must be between 0 and 100, got {out_of_range[0]}%",
            test_id=test_id,
            total=total,
        )

    if total != 100:
        raise TrafficConfigurationError(
            f"Traffic percentages must sum to 100%, got {total}%", test_id=test_id, total=total
        )


def validate_traffic(variants: Sequence, test_id: Optional[str] = None) -> None:
    check_split([v.traffic_percentage for v in variants], test_id)


def select_variant(variants: Sequence, visitor_id: str):
    """
    Walk the cumulative traffic ranges in the given order and return the
    variant whose range contains the visitor's bucket.
    """
    bucket = bucket_for(visitor_id)

    cumulative = 0
    for variant in variants:
        cumulative += variant.traffic_percentage
        if bucket < cumulative:
            return variant

    # Unreachable when percentages sum to 100
    return next((v for v in variants if v.is_control), variants[0])


class Allocator:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.tests = TestStore(db)
        self.allocations = AllocationStore(db)

    async def allocate(self, test_id: str, visitor_id: str) -> Optional[ABTestVariant]:
        if not visitor_id:
            raise InvalidRequestError("visitor_id must be a non-empty string", "visitor_id")

        test = await self.tests.get_test(test_id)
        if not test:
            raise TestNotFoundError(test_id)

        # Sticky: an earlier decision wins over the current split and status
        existing = await self.allocations.get_variant_for(test_id, visitor_id)
        if existing:
            return existing

        if test.status != ABTestStatus.RUNNING:
            return None

        variants = await self.tests.get_variants(test_id)
        validate_traffic(variants, test_id)

        selected = select_variant(variants, visitor_id)

        self.allocations.add(
            ABTestAllocation(
                id=str(uuid.uuid4()),
                test_id=test_id,
                variant_id=selected.id,
                user_identifier=visitor_id,
            )
        )

        try:
            await self.db.commit()
        except IntegrityError:
            # Another request allocated this visitor between our read and write
            await self.db.rollback()
            winner = await self.allocations.get_variant_for(test_id, visitor_id)
            if winner is None:
                raise

            logger.info(
                "allocation_race_recovered",
                test_id=test_id,
                variant_id=winner.id,
                visitor=mask_visitor(visitor_id),
            )
            return winner

        logger.info(
            "visitor_allocated",
            test_id=test_id,
            variant_id=selected.id,
            visitor=mask_visitor(visitor_id),
        )
        return selected
