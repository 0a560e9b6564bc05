import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import structlog

logger = structlog.get_logger(__name__)

# Two-sided critical value for the per-variant 95% interval
Z_95 = 1.96

# Classical lower bound for the normal approximation to hold
MIN_VISITORS_FOR_SIGNIFICANCE = 30

# Abramowitz & Stegun 26.2.17, |error| < 7.5e-8
_AS_P = 0.2316419
_AS_B = (0.319381530, -0.356563782, 1.781477937, -1.821255978, 1.330274429)
_INV_SQRT_2PI = 1.0 / math.sqrt(2.0 * math.pi)

SIGNIFICANT = "significant"
INCONCLUSIVE = "inconclusive"
INSUFFICIENT_DATA = "insufficient_data"


@dataclass
class VariantData:
    name: str
    users: int
    conversions: int
    is_control: bool = False
    variant_id: Optional[str] = None
    conversion_events: int = 0
    conversion_value: float = 0.0

    @property
    def conversion_rate(self) -> float:
        if self.users == 0:
            return 0.0
        return self.conversions / self.users


@dataclass
class VariantAnalysis:
    variant_id: Optional[str]
    variant_name: str
    is_control: bool
    visitors: int
    conversions: int
    conversion_events: int
    conversion_value: float
    conversion_rate: float  # Percentage
    confidence_interval_lower: float  # Percentage
    confidence_interval_upper: float  # Percentage
    z_score: Optional[float] = None
    p_value: Optional[float] = None
    significance: Optional[float] = None  # Percentage
    relative_lift: Optional[float] = None  # Percentage vs control
    is_winner: bool = False


@dataclass
class TestAnalysis:
    __test__ = False

    variants: List[VariantAnalysis]
    statistical_significance: float  # Percentage, max over comparisons
    confidence_level: float  # Target, percentage
    test_status: str
    comparisons: int = 0
    winner_variant_id: Optional[str] = None
    sample_size_reached: bool = False
    skipped_comparisons: List[str] = field(default_factory=list)


def normal_cdf(x: float) -> float:
    """
    Standard normal CDF via the Zelen & Severo rational approximation.

    Closed form so results do not depend on which numeric library is
    installed; accurate to better than 1e-7 everywhere.
    """
    t = 1.0 / (1.0 + _AS_P * abs(x))
    pdf = _INV_SQRT_2PI * math.exp(-x * x / 2.0)
    b1, b2, b3, b4, b5 = _AS_B
    tail = pdf * t * (b1 + t * (b2 + t * (b3 + t * (b4 + t * b5))))
    return 1.0 - tail if x >= 0 else tail


def calculate_conversion_rate(conversions: int, users: int) -> float:
    if users == 0:
        return 0.0
    return (conversions / users) * 100


def calculate_lift(control_rate: float, variant_rate: float) -> Tuple[float, float]:
    # Absolute lift in percentage points
    absolute_lift = (variant_rate - control_rate) * 100

    # Relative lift as percentage improvement
    if control_rate == 0:
        relative_lift = float("inf") if variant_rate > 0 else 0.0
    else:
        relative_lift = ((variant_rate - control_rate) / control_rate) * 100

    return absolute_lift, relative_lift


def calculate_pooled_proportion(control: VariantData, variant: VariantData) -> float:
    total_conversions = control.conversions + variant.conversions
    total_users = control.users + variant.users

    if total_users == 0:
        return 0.0

    return total_conversions / total_users


def calculate_standard_error(control: VariantData, variant: VariantData) -> float:
    if control.users == 0 or variant.users == 0:
        return 0.0

    p_pooled = calculate_pooled_proportion(control, variant)
    return math.sqrt(p_pooled * (1 - p_pooled) * (1 / control.users + 1 / variant.users))


def run_proportion_z_test(control: VariantData, variant: VariantData) -> Tuple[float, float]:
    """Signed z (positive when the variant converts better) and two-tailed p-value."""
    p1 = control.conversion_rate
    p2 = variant.conversion_rate

    se = calculate_standard_error(control, variant)

    if se == 0:
        return 0.0, 1.0

    z_score = (p2 - p1) / se

    # Two-tailed p-value
    p_value = 2 * (1 - normal_cdf(abs(z_score)))

    return z_score, min(max(p_value, 0.0), 1.0)


def calculate_rate_confidence_interval(variant: VariantData) -> Tuple[float, float]:
    """95% Wald interval for one variant's rate, in percent, clipped to [0, 100]."""
    if variant.users == 0:
        return 0.0, 0.0

    p = variant.conversion_rate
    margin = Z_95 * math.sqrt(p * (1 - p) / variant.users)

    lower = max(0.0, (p - margin) * 100)
    upper = min(100.0, (p + margin) * 100)

    return lower, upper


def bonferroni_adjust(p_value: float, comparisons: int) -> float:
    if comparisons <= 1:
        return p_value
    return min(1.0, p_value * comparisons)


def select_control(variants: Sequence[VariantData]) -> int:
    """Index of the flagged control, falling back to the first variant."""
    for i, v in enumerate(variants):
        if v.is_control:
            return i

    logger.warning("control_variant_missing", fallback_variant=variants[0].name)
    return 0


def analyze_test(
    variants: Sequence[VariantData],
    confidence_level: float = 95.0,
    min_visitors: int = MIN_VISITORS_FOR_SIGNIFICANCE,
    min_sample_size: Optional[int] = None,
) -> TestAnalysis:
    """
    Compare every challenger against control with a pooled two-proportion z-test.

    `variants` must already be in display order (control first, then creation
    order). Significance is Bonferroni-adjusted across the challengers, so a
    two-variant test reports the plain `(1 - p) * 100`.
    """
    analyses = []
    for v in variants:
        ci_lower, ci_upper = calculate_rate_confidence_interval(v)
        analyses.append(
            VariantAnalysis(
                variant_id=v.variant_id,
                variant_name=v.name,
                is_control=v.is_control,
                visitors=v.users,
                conversions=v.conversions,
                conversion_events=v.conversion_events,
                conversion_value=v.conversion_value,
                conversion_rate=calculate_conversion_rate(v.conversions, v.users),
                confidence_interval_lower=ci_lower,
                confidence_interval_upper=ci_upper,
            )
        )

    sample_size_reached = bool(variants) and all(
        v.users >= (min_sample_size or min_visitors) for v in variants
    )

    if len(variants) < 2:
        return TestAnalysis(
            variants=analyses,
            statistical_significance=0.0,
            confidence_level=confidence_level,
            test_status=INSUFFICIENT_DATA,
            sample_size_reached=sample_size_reached,
        )

    control_index = select_control(variants)
    control = variants[control_index]
    analyses[control_index].is_control = True

    challengers = [(i, v) for i, v in enumerate(variants) if i != control_index]
    comparisons = len(challengers)

    max_significance = 0.0
    leader_index: Optional[int] = None
    skipped = []

    for i, variant in challengers:
        if control.conversion_rate > 0:
            _, relative_lift = calculate_lift(control.conversion_rate, variant.conversion_rate)
            analyses[i].relative_lift = relative_lift

        if control.users < min_visitors or variant.users < min_visitors:
            skipped.append(variant.name)
            continue

        z_score, p_value = run_proportion_z_test(control, variant)
        significance = (1 - bonferroni_adjust(p_value, comparisons)) * 100

        analyses[i].z_score = z_score
        analyses[i].p_value = p_value
        analyses[i].significance = significance

        if significance > max_significance:
            max_significance = significance
            leader_index = i if variant.conversion_rate > control.conversion_rate else control_index

    winner_variant_id = None
    if leader_index is not None and max_significance >= confidence_level:
        analyses[leader_index].is_winner = True
        winner_variant_id = analyses[leader_index].variant_id
        status = SIGNIFICANT
    elif all(v.users >= min_visitors for v in variants):
        status = INCONCLUSIVE
    else:
        status = INSUFFICIENT_DATA

    return TestAnalysis(
        variants=analyses,
        statistical_significance=max_significance,
        confidence_level=confidence_level,
        test_status=status,
        comparisons=comparisons,
        winner_variant_id=winner_variant_id,
        sample_size_reached=sample_size_reached,
        skipped_comparisons=skipped,
    )
