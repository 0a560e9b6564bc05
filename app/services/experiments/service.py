from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, get_settings
from app.models.experiment import ABTest, ABTestConversion, ABTestVariant
from app.models.schemas import (
    ABTestResponse,
    ABTestResults,
    ABTestStatusEnum,
    CreateABTestRequest,
    GoalDefinition,
    ResultStatusEnum,
    VariantResponse,
    VariantResults,
)
from app.services.experiments.allocation import Allocator
from app.services.experiments.conversions import ConversionRecorder
from app.services.experiments.lifecycle import CleanupResult, TestLifecycleManager
from app.services.experiments.repository import AllocationStore, ConversionStore, TestStore
from app.services.experiments.stats import VariantData, analyze_test


class ABTestService:
    """
    Entry point for hosts: one instance per session, wiring the allocator,
    conversion recorder, lifecycle manager and results aggregation together.
    """

    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()
        self.allocator = Allocator(db)
        self.recorder = ConversionRecorder(db, strict=self.settings.AB_STRICT_CONVERSIONS)
        self.lifecycle = TestLifecycleManager(db, self.settings)

    async def create_test(self, landing_page_id: str, config: CreateABTestRequest) -> ABTest:
        return await self.lifecycle.create_test(landing_page_id, config)

    async def get_test(self, test_id: str) -> ABTest:
        return await self.lifecycle.get_test(test_id)

    async def update_status(self, test_id: str, status: ABTestStatusEnum) -> ABTest:
        return await self.lifecycle.update_status(test_id, status)

    async def get_active_tests_for_page(self, landing_page_id: str) -> List[ABTest]:
        return await self.lifecycle.get_active_tests_for_page(landing_page_id)

    async def rebalance_traffic(self, test_id: str, traffic: Dict[str, int]) -> ABTest:
        return await self.lifecycle.rebalance_traffic(test_id, traffic)

    async def delete_test(self, test_id: str) -> None:
        await self.lifecycle.delete_test(test_id)

    async def cleanup(self, days_to_keep: Optional[int] = None) -> CleanupResult:
        return await self.lifecycle.cleanup(days_to_keep)

    async def allocate(self, test_id: str, visitor_id: str) -> Optional[ABTestVariant]:
        return await self.allocator.allocate(test_id, visitor_id)

    async def record_conversion(
        self,
        test_id: str,
        variant_id: str,
        visitor_id: str,
        conversion_type: str = "conversion",
        value: Optional[float] = None,
    ) -> ABTestConversion:
        return await self.recorder.record_conversion(
            test_id, variant_id, visitor_id, conversion_type, value
        )

    async def get_results(self, test_id: str, conversion_type: Optional[str] = None) -> ABTestResults:
        test = await self.lifecycle.get_test(test_id)
        variants = await TestStore(self.db).get_variants(test_id)

        visitors = await AllocationStore(self.db).visitor_counts(test_id)
        conversions = await ConversionStore(self.db).counts_by_variant(test_id, conversion_type)

        data = []
        for v in variants:
            counts = conversions.get(v.id)
            data.append(
                VariantData(
                    name=v.name,
                    users=visitors.get(v.id, 0),
                    conversions=counts.converted_visitors if counts else 0,
                    is_control=bool(v.is_control),
                    variant_id=v.id,
                    conversion_events=counts.events if counts else 0,
                    conversion_value=counts.value if counts else 0.0,
                )
            )

        analysis = analyze_test(
            data,
            confidence_level=test.confidence_level,
            min_visitors=self.settings.AB_MIN_VISITORS_FOR_SIGNIFICANCE,
            min_sample_size=test.min_sample_size,
        )

        return ABTestResults(
            test_id=test_id,
            variants=[
                VariantResults(
                    variant_id=a.variant_id,
                    variant_name=a.variant_name,
                    is_control=a.is_control,
                    visitors=a.visitors,
                    conversions=a.conversions,
                    conversion_events=a.conversion_events,
                    conversion_value=a.conversion_value,
                    conversion_rate=a.conversion_rate,
                    confidence_interval_lower=a.confidence_interval_lower,
                    confidence_interval_upper=a.confidence_interval_upper,
                    z_score=a.z_score,
                    z_score_abs=abs(a.z_score) if a.z_score is not None else None,
                    p_value=a.p_value,
                    significance=a.significance,
                    relative_lift=a.relative_lift,
                    is_winner=a.is_winner,
                )
                for a in analysis.variants
            ],
            statistical_significance=analysis.statistical_significance,
            confidence_interval=analysis.confidence_level,
            winner_variant_id=analysis.winner_variant_id,
            test_status=ResultStatusEnum(analysis.test_status),
            comparisons=analysis.comparisons,
            skipped_comparisons=analysis.skipped_comparisons,
            sample_size_reached=analysis.sample_size_reached,
        )

    @staticmethod
    def variant_response(variant: ABTestVariant) -> VariantResponse:
        return VariantResponse(
            id=variant.id,
            name=variant.name,
            template_id=variant.template_id,
            traffic_percentage=variant.traffic_percentage,
            is_control=bool(variant.is_control),
        )

    def to_response(self, test: ABTest) -> ABTestResponse:
        return ABTestResponse(
            id=test.id,
            landing_page_id=test.landing_page_id,
            name=test.name,
            description=test.description,
            status=ABTestStatusEnum(test.status.value),
            start_date=test.start_date,
            end_date=test.end_date,
            confidence_level=test.confidence_level,
            min_sample_size=test.min_sample_size,
            goals=[GoalDefinition.model_validate(goal) for goal in test.goals or []],
            metadata=test.metadata_,
            created_at=test.created_at,
            updated_at=test.updated_at,
            variants=[self.variant_response(v) for v in test.variants],
        )
