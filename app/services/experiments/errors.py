"""Exceptions raised by the A/B testing engine."""
from typing import Any, Dict, Optional


class ExperimentError(Exception):
    """Base exception for the A/B testing engine."""

    def __init__(
        self, message: str, error_code: str = "EXPERIMENT_ERROR", details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}


class TrafficConfigurationError(ExperimentError):
    """Variant split is unusable: no variants, or percentages not summing to 100."""

    def __init__(self, message: str, test_id: Optional[str] = None, total: Optional[int] = None):
        super().__init__(message, "TRAFFIC_CONFIGURATION_ERROR", {"test_id": test_id, "total": total})
        self.test_id = test_id
        self.total = total


class NotFoundError(ExperimentError):
    """A referenced record does not exist."""


class TestNotFoundError(NotFoundError):
    __test__ = False

    def __init__(self, test_id: str):
        super().__init__(f"A/B test {test_id} not found", "TEST_NOT_FOUND", {"test_id": test_id})
        self.test_id = test_id


class VariantNotFoundError(NotFoundError):
    def __init__(self, variant_id: str, test_id: Optional[str] = None):
        super().__init__(
            f"Variant {variant_id} not found for test {test_id}",
            "VARIANT_NOT_FOUND",
            {"variant_id": variant_id, "test_id": test_id},
        )
        self.variant_id = variant_id
        self.test_id = test_id


class AllocationNotFoundError(NotFoundError):
    def __init__(self, test_id: str):
        super().__init__(
            f"Visitor has no allocation for test {test_id}",
            "ALLOCATION_NOT_FOUND",
            {"test_id": test_id},
        )
        self.test_id = test_id


class AllocationMismatchError(ExperimentError):
    """Reported variant differs from the one stored for the visitor."""

    def __init__(self, test_id: str, expected_variant_id: str, reported_variant_id: str):
        super().__init__(
            f"Conversion for test {test_id} reports variant {reported_variant_id} "
            f"but the visitor is allocated to {expected_variant_id}",
            "ALLOCATION_MISMATCH",
            {
                "test_id": test_id,
                "expected_variant_id": expected_variant_id,
                "reported_variant_id": reported_variant_id,
            },
        )
        self.test_id = test_id
        self.expected_variant_id = expected_variant_id
        self.reported_variant_id = reported_variant_id


class InvalidRequestError(ExperimentError, ValueError):
    """Caller-supplied argument is unusable, e.g. an empty visitor id."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, "INVALID_REQUEST", {"field": field})
        self.field = field
