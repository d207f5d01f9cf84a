"""
Feature providers package.

Feature providers detect, schedule and execute periodic inspections.
"""

from providers.features.base import (
    FeatureContext,
    FeatureProvider,
    InitOnce,
    InspectionBackend,
)

__all__ = ["FeatureContext", "FeatureProvider", "InitOnce", "InspectionBackend"]
