from app.models.experiment import (  # noqa: F401
    ABTest,
    ABTestAllocation,
    ABTestConversion,
    ABTestStatus,
    ABTestVariant,
)
from app.models.schemas import (  # noqa: F401
    ABTestResponse,
    ABTestResults,
    ABTestStatusEnum,
    CreateABTestRequest,
    GoalDefinition,
    VariantConfig,
)
