import uuid
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import mask_visitor
from app.models.experiment import ABTestConversion
from app.services.experiments.errors import (
    AllocationMismatchError,
    AllocationNotFoundError,
    InvalidRequestError,
    TestNotFoundError,
    VariantNotFoundError,
)
from app.services.experiments.repository import AllocationStore, ConversionStore, TestStore

logger = structlog.get_logger(__name__)


class ConversionRecorder:
    """
    Appends conversion events for allocated visitors.

    With `strict=True` the reported variant is checked against the visitor's
    stored allocation. With `strict=False` the caller is trusted to pass the
    variant it was given by `allocate`, and only the test and variant are
    checked for existence.
    """

    def __init__(self, db: AsyncSession, strict: bool = True):
        self.db = db
        self.strict = strict
        self.tests = TestStore(db)
        self.allocations = AllocationStore(db)
        self.conversions = ConversionStore(db)

    async def record_conversion(
        self,
        test_id: str,
        variant_id: str,
        visitor_id: str,
        conversion_type: str = "conversion",
        value: Optional[float] = None,
    ) -> ABTestConversion:
        if not visitor_id:
            raise InvalidRequestError("visitor_id must be a non-empty string", "visitor_id")

        test = await self.tests.get_test(test_id)
        if not test:
            raise TestNotFoundError(test_id)

        variant = await self.tests.get_variant(variant_id)
        if not variant or variant.test_id != test_id:
            raise VariantNotFoundError(variant_id, test_id)

        if self.strict:
            allocation = await self.allocations.get(test_id, visitor_id)
            if not allocation:
                raise AllocationNotFoundError(test_id)
            if allocation.variant_id != variant_id:
                logger.warning(
                    "conversion_variant_mismatch",
                    test_id=test_id,
                    expected_variant_id=allocation.variant_id,
                    reported_variant_id=variant_id,
                    visitor=mask_visitor(visitor_id),
                )
                raise AllocationMismatchError(test_id, allocation.variant_id, variant_id)

        conversion = ABTestConversion(
            id=str(uuid.uuid4()),
            test_id=test_id,
            variant_id=variant_id,
            user_identifier=visitor_id,
            conversion_type=conversion_type,
            conversion_value=value,
        )
        self.conversions.add(conversion)
        await self.db.commit()

        logger.info(
            "conversion_recorded",
            test_id=test_id,
            variant_id=variant_id,
            conversion_type=conversion_type,
            visitor=mask_visitor(visitor_id),
        )
        return conversion
