from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class ABTestStatusEnum(str, Enum):
    DRAFT = "draft"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"


class ResultStatusEnum(str, Enum):
    SIGNIFICANT = "significant"
    INCONCLUSIVE = "inconclusive"
    INSUFFICIENT_DATA = "insufficient_data"


class GoalTypeEnum(str, Enum):
    CONVERSION = "conversion"
    CLICK = "click"
    FORM_SUBMIT = "form_submit"
    TIME_ON_PAGE = "time_on_page"


class GoalDefinition(BaseModel):
    """Versioned goal entry stored in the test's goals column."""

    schema_version: Literal[1] = 1
    name: str = Field(..., min_length=1, max_length=200)
    type: GoalTypeEnum = GoalTypeEnum.CONVERSION
    target_value: Optional[float] = None
    weight: float = Field(1.0, gt=0)


class VariantConfig(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    template_id: Optional[str] = Field(None, description="Opaque reference used by the page renderer")
    traffic_percentage: int = Field(..., ge=0, le=100)
    is_control: bool = False


class CreateABTestRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    status: ABTestStatusEnum = ABTestStatusEnum.DRAFT
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    confidence_level: Optional[float] = Field(
        None, gt=0, lt=100, description="Significance target in percent, e.g. 95"
    )
    min_sample_size: Optional[int] = Field(None, ge=1, description="Visitors needed per variant")
    variants: List[VariantConfig] = Field(..., min_length=1)
    goals: List[GoalDefinition] = []
    metadata: Optional[Dict[str, Any]] = None

    @model_validator(mode="after")
    def check_dates(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class CreateABTestBody(CreateABTestRequest):
    landing_page_id: str = Field(..., min_length=1)


class UpdateStatusRequest(BaseModel):
    status: ABTestStatusEnum


class RebalanceTrafficRequest(BaseModel):
    traffic: Dict[str, int] = Field(..., description="variant_id -> traffic percentage")

    @field_validator("traffic")
    @classmethod
    def check_range(cls, v):
        for variant_id, pct in v.items():
            if not 0 <= pct <= 100:
                raise ValueError(f"traffic for {variant_id} must be between 0 and 100")
        return v


class AllocateRequest(BaseModel):
    visitor_id: str = Field(..., min_length=1)


class RecordConversionRequest(BaseModel):
    variant_id: str = Field(..., min_length=1)
    visitor_id: str = Field(..., min_length=1)
    conversion_type: str = Field("conversion", min_length=1, max_length=100)
    value: Optional[float] = None


class VariantResponse(BaseModel):
    id: str
    name: str
    template_id: Optional[str] = None
    traffic_percentage: int
    is_control: bool

    class Config:
        from_attributes = True


class ABTestResponse(BaseModel):
    id: str
    landing_page_id: str
    name: str
    description: Optional[str] = None
    status: ABTestStatusEnum
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    confidence_level: float
    min_sample_size: int
    goals: List[GoalDefinition] = []
    metadata: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    variants: List[VariantResponse] = []


class ABTestListResponse(BaseModel):
    tests: List[ABTestResponse]
    total: int


class AllocationResponse(BaseModel):
    test_id: str
    allocated: bool
    variant: Optional[VariantResponse] = None


class ConversionResponse(BaseModel):
    id: str
    test_id: str
    variant_id: str
    conversion_type: str
    conversion_value: Optional[float] = None
    converted_at: datetime

    class Config:
        from_attributes = True


class VariantResults(BaseModel):
    variant_id: str
    variant_name: str
    is_control: bool
    visitors: int
    conversions: int  # Distinct converted visitors
    conversion_events: int
    conversion_value: float
    conversion_rate: float  # Percent
    confidence_interval_lower: float  # Percent
    confidence_interval_upper: float  # Percent
    z_score: Optional[float] = Field(
        None,
        description="Signed z-statistic vs control: positive when this variant converts better. "
        "Use z_score_abs for the unsigned magnitude.",
    )
    z_score_abs: Optional[float] = None
    p_value: Optional[float] = None
    significance: Optional[float] = None  # Percent, Bonferroni-adjusted
    relative_lift: Optional[float] = None  # Percent vs control
    is_winner: bool = False


class ABTestResults(BaseModel):
    test_id: str
    variants: List[VariantResults]
    statistical_significance: float
    confidence_interval: float  # Target confidence level in percent
    winner_variant_id: Optional[str] = None
    test_status: ResultStatusEnum
    comparisons: int
    # Challengers not tested because an arm is below the minimum visitor count
    skipped_comparisons: List[str] = []
    sample_size_reached: bool


class CleanupResponse(BaseModel):
    conversions_deleted: int
    allocations_deleted: int
    cutoff: datetime
