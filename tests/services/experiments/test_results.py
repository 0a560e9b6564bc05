import pytest

from app.models.schemas import ResultStatusEnum
from app.services.experiments.errors import TestNotFoundError


class TestGetResults:
    @pytest.mark.asyncio
    async def test_significant_challenger(self, service, make_config, seed_traffic):
        test = await service.create_test("page-1", make_config())
        await seed_traffic(test, {0: (1000, 100), 1: (1000, 130)})

        results = await service.get_results(test.id)

        control, challenger = results.variants
        assert control.is_control
        assert control.visitors == 1000
        assert control.conversions == 100
        assert control.conversion_rate == pytest.approx(10.0)
        assert control.z_score is None
        assert control.p_value is None

        assert challenger.conversion_rate == pytest.approx(13.0)
        assert challenger.relative_lift == pytest.approx(30.0)
        assert challenger.z_score == pytest.approx(2.1027, abs=1e-3)
        assert challenger.p_value == pytest.approx(0.0355, abs=1e-3)
        assert challenger.is_winner

        assert results.test_status == ResultStatusEnum.SIGNIFICANT
        assert results.winner_variant_id == challenger.variant_id
        assert results.statistical_significance == pytest.approx(96.45, abs=0.1)
        assert results.confidence_interval == 95.0
        assert results.comparisons == 1
        assert results.sample_size_reached

    @pytest.mark.asyncio
    async def test_confidence_intervals(self, service, make_config, seed_traffic):
        test = await service.create_test("page-1", make_config())
        await seed_traffic(test, {0: (1000, 100), 1: (1000, 130)})

        results = await service.get_results(test.id)

        control = results.variants[0]
        # 10% +/- 1.96 * sqrt(0.1 * 0.9 / 1000)
        assert control.confidence_interval_lower == pytest.approx(8.1406, abs=1e-3)
        assert control.confidence_interval_upper == pytest.approx(11.8594, abs=1e-3)

    @pytest.mark.asyncio
    async def test_insufficient_data(self, service, make_config, seed_traffic):
        test = await service.create_test("page-1", make_config())
        await seed_traffic(test, {0: (20, 2), 1: (20, 15)})

        results = await service.get_results(test.id)

        assert results.test_status == ResultStatusEnum.INSUFFICIENT_DATA
        assert results.winner_variant_id is None
        assert not results.sample_size_reached
        assert not any(v.is_winner for v in results.variants)

    @pytest.mark.asyncio
    async def test_control_ahead_gives_negative_z(self, service, make_config, seed_traffic):
        test = await service.create_test("page-1", make_config())
        await seed_traffic(test, {0: (1000, 130), 1: (1000, 100)})

        results = await service.get_results(test.id)

        control, challenger = results.variants
        assert challenger.z_score == pytest.approx(-2.1027, abs=1e-3)
        assert challenger.z_score_abs == pytest.approx(2.1027, abs=1e-3)
        assert control.z_score_abs is None
        assert control.is_winner
        assert results.winner_variant_id == control.variant_id

    @pytest.mark.asyncio
    async def test_skipped_comparisons_reported(self, service, make_config, seed_traffic):
        test = await service.create_test("page-1", make_config((40, 30, 30)))
        await seed_traffic(test, {0: (100, 10), 1: (100, 12), 2: (10, 1)})

        results = await service.get_results(test.id)

        assert results.comparisons == 2
        assert results.skipped_comparisons == ["variant_b"]
        skipped = results.variants[2]
        assert skipped.z_score is None
        assert skipped.p_value is None
        assert results.variants[1].z_score is not None

    @pytest.mark.asyncio
    async def test_nothing_skipped_with_enough_traffic(self, service, make_config, seed_traffic):
        test = await service.create_test("page-1", make_config())
        await seed_traffic(test, {0: (100, 10), 1: (100, 12)})

        results = await service.get_results(test.id)

        assert results.skipped_comparisons == []

    @pytest.mark.asyncio
    async def test_inconclusive(self, service, make_config, seed_traffic):
        test = await service.create_test("page-1", make_config())
        await seed_traffic(test, {0: (500, 50), 1: (500, 52)})

        results = await service.get_results(test.id)

        assert results.test_status == ResultStatusEnum.INCONCLUSIVE
        assert results.winner_variant_id is None

    @pytest.mark.asyncio
    async def test_no_traffic(self, service, make_config):
        test = await service.create_test("page-1", make_config())

        results = await service.get_results(test.id)

        assert results.test_status == ResultStatusEnum.INSUFFICIENT_DATA
        for variant in results.variants:
            assert variant.visitors == 0
            assert variant.conversion_rate == 0.0
            assert variant.confidence_interval_lower == 0.0
            assert variant.confidence_interval_upper == 0.0

    @pytest.mark.asyncio
    async def test_repeat_conversions_count_once(self, service, make_config):
        test = await service.create_test("page-1", make_config())
        variant = await service.allocate(test.id, "hello")

        await service.record_conversion(test.id, variant.id, "hello", value=10.0)
        await service.record_conversion(test.id, variant.id, "hello", value=15.0)

        results = await service.get_results(test.id)
        row = next(v for v in results.variants if v.variant_id == variant.id)
        assert row.visitors == 1
        assert row.conversions == 1
        assert row.conversion_events == 2
        assert row.conversion_value == pytest.approx(25.0)
        assert row.conversion_rate == pytest.approx(100.0)

    @pytest.mark.asyncio
    async def test_filter_by_conversion_type(self, service, make_config):
        test = await service.create_test("page-1", make_config())
        variant = await service.allocate(test.id, "hello")

        await service.record_conversion(test.id, variant.id, "hello", "click")
        await service.record_conversion(test.id, variant.id, "hello", "signup")
        await service.record_conversion(test.id, variant.id, "hello", "signup")

        def events(results):
            return next(v for v in results.variants if v.variant_id == variant.id).conversion_events

        assert events(await service.get_results(test.id)) == 3
        assert events(await service.get_results(test.id, "signup")) == 2
        assert events(await service.get_results(test.id, "click")) == 1
        assert events(await service.get_results(test.id, "purchase")) == 0

    @pytest.mark.asyncio
    async def test_variant_order_puts_control_first(self, service, make_config, seed_traffic):
        test = await service.create_test("page-1", make_config((30, 30, 40), control_index=2))
        await seed_traffic(test, {0: (100, 10), 1: (100, 10), 2: (100, 10)})

        results = await service.get_results(test.id)

        assert [v.variant_name for v in results.variants] == ["variant_b", "control", "variant_a"]
        assert results.variants[0].is_control
        assert results.comparisons == 2

    @pytest.mark.asyncio
    async def test_unknown_test(self, service):
        with pytest.raises(TestNotFoundError):
            await service.get_results("missing-test")
