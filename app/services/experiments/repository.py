"""
Storage access for the A/B testing tables.

Each store wraps the session it is given and never commits; transaction
boundaries belong to the caller.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import delete, distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.experiment import (
    ABTest,
    ABTestAllocation,
    ABTestConversion,
    ABTestStatus,
    ABTestVariant,
)


@dataclass
class ConversionCounts:
    converted_visitors: int = 0
    events: int = 0
    value: float = 0.0


class TestStore:
    __test__ = False

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_test(self, test_id: str) -> Optional[ABTest]:
        result = await self.db.execute(
            select(ABTest).options(selectinload(ABTest.variants)).where(ABTest.id == test_id)
        )
        return result.scalar_one_or_none()

    async def get_variants(self, test_id: str) -> List[ABTestVariant]:
        """Variants in allocation order: control first, then creation order."""
        result = await self.db.execute(
            select(ABTestVariant)
            .where(ABTestVariant.test_id == test_id)
            .order_by(ABTestVariant.is_control.desc(), ABTestVariant.position.asc())
        )
        return list(result.scalars().all())

    async def get_variant(self, variant_id: str) -> Optional[ABTestVariant]:
        result = await self.db.execute(select(ABTestVariant).where(ABTestVariant.id == variant_id))
        return result.scalar_one_or_none()

    async def list_running_for_page(self, landing_page_id: str) -> List[ABTest]:
        result = await self.db.execute(
            select(ABTest)
            .options(selectinload(ABTest.variants))
            .where(ABTest.landing_page_id == landing_page_id)
            .where(ABTest.status == ABTestStatus.RUNNING)
            .order_by(ABTest.created_at.desc())
        )
        return list(result.scalars().all())

    async def delete_test_rows(self, test_id: str) -> None:
        # Children first so the cascade does not depend on backend FK support
        await self.db.execute(delete(ABTestConversion).where(ABTestConversion.test_id == test_id))
        await self.db.execute(delete(ABTestAllocation).where(ABTestAllocation.test_id == test_id))
        await self.db.execute(delete(ABTestVariant).where(ABTestVariant.test_id == test_id))
        await self.db.execute(delete(ABTest).where(ABTest.id == test_id))


class AllocationStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, test_id: str, visitor_id: str) -> Optional[ABTestAllocation]:
        result = await self.db.execute(
            select(ABTestAllocation).where(
                ABTestAllocation.test_id == test_id,
                ABTestAllocation.user_identifier == visitor_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_variant_for(self, test_id: str, visitor_id: str) -> Optional[ABTestVariant]:
        result = await self.db.execute(
            select(ABTestVariant)
            .join(ABTestAllocation, ABTestAllocation.variant_id == ABTestVariant.id)
            .where(
                ABTestAllocation.test_id == test_id,
                ABTestAllocation.user_identifier == visitor_id,
            )
        )
        return result.scalar_one_or_none()

    def add(self, allocation: ABTestAllocation) -> None:
        self.db.add(allocation)

    async def visitor_counts(self, test_id: str) -> Dict[str, int]:
        result = await self.db.execute(
            select(ABTestAllocation.variant_id, func.count(distinct(ABTestAllocation.user_identifier)))
            .where(ABTestAllocation.test_id == test_id)
            .group_by(ABTestAllocation.variant_id)
        )
        return {variant_id: count for variant_id, count in result.all()}

    async def count(self, test_id: str, visitor_id: Optional[str] = None) -> int:
        query = select(func.count(ABTestAllocation.id)).where(ABTestAllocation.test_id == test_id)
        if visitor_id is not None:
            query = query.where(ABTestAllocation.user_identifier == visitor_id)
        result = await self.db.execute(query)
        return result.scalar_one()

    async def delete_batch_before(self, cutoff: datetime, batch_size: int) -> int:
        result = await self.db.execute(
            select(ABTestAllocation.id).where(ABTestAllocation.allocated_at < cutoff).limit(batch_size)
        )
        ids = list(result.scalars().all())
        if ids:
            await self.db.execute(delete(ABTestAllocation).where(ABTestAllocation.id.in_(ids)))
        return len(ids)


class ConversionStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    def add(self, conversion: ABTestConversion) -> None:
        self.db.add(conversion)

    async def counts_by_variant(
        self, test_id: str, conversion_type: Optional[str] = None
    ) -> Dict[str, ConversionCounts]:
        """
        Conversions per variant, restricted to visitors allocated to that variant.

        `converted_visitors` counts distinct visitors, `events` counts rows.
        """
        query = (
            select(
                ABTestConversion.variant_id,
                func.count(distinct(ABTestConversion.user_identifier)),
                func.count(ABTestConversion.id),
                func.coalesce(func.sum(ABTestConversion.conversion_value), 0.0),
            )
            .join(
                ABTestAllocation,
                (ABTestAllocation.test_id == ABTestConversion.test_id)
                & (ABTestAllocation.variant_id == ABTestConversion.variant_id)
                & (ABTestAllocation.user_identifier == ABTestConversion.user_identifier),
            )
            .where(ABTestConversion.test_id == test_id)
            .group_by(ABTestConversion.variant_id)
        )
        if conversion_type is not None:
            query = query.where(ABTestConversion.conversion_type == conversion_type)

        result = await self.db.execute(query)
        return {
            variant_id: ConversionCounts(
                converted_visitors=visitors, events=events, value=float(value or 0.0)
            )
            for variant_id, visitors, events, value in result.all()
        }

    async def delete_batch_before(self, cutoff: datetime, batch_size: int) -> int:
        result = await self.db.execute(
            select(ABTestConversion.id).where(ABTestConversion.converted_at < cutoff).limit(batch_size)
        )
        ids = list(result.scalars().all())
        if ids:
            await self.db.execute(delete(ABTestConversion).where(ABTestConversion.id.in_(ids)))
        return len(ids)
