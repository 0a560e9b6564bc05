"""
A/B testing engine for landing pages.

This module provides:
- Sticky, hash-based allocation of visitors to variants
- Conversion recording tied to allocations
- Two-proportion z-test analysis against a control variant
- Test lifecycle management and retention cleanup
"""

from app.services.experiments.allocation import Allocator, bucket_for, visitor_hash
from app.services.experiments.conversions import ConversionRecorder
from app.services.experiments.errors import (
    AllocationMismatchError,
    AllocationNotFoundError,
    ExperimentError,
    InvalidRequestError,
    NotFoundError,
    TestNotFoundError,
    TrafficConfigurationError,
    VariantNotFoundError,
)
from app.services.experiments.lifecycle import CleanupResult, TestLifecycleManager
from app.services.experiments.service import ABTestService
from app.services.experiments.stats import (
    analyze_test,
    normal_cdf,
    run_proportion_z_test,
)

__all__ = [
    "ABTestService",
    "Allocator",
    "ConversionRecorder",
    "TestLifecycleManager",
    "CleanupResult",
    "visitor_hash",
    "bucket_for",
    "analyze_test",
    "normal_cdf",
    "run_proportion_z_test",
    "ExperimentError",
    "InvalidRequestError",
    "NotFoundError",
    "TestNotFoundError",
    "VariantNotFoundError",
    "AllocationNotFoundError",
    "AllocationMismatchError",
    "TrafficConfigurationError",
]
