"""Plate and insurance alert pipeline: stateless detection plus lifecycle reconciliation."""

from .models import AlertRunResult, DetectedAlert, DetectedInsuranceAlert
from .detector import AlertDetector
from .lifecycle import AlertLifecycleManager

__all__ = [
    "AlertDetector",
    "AlertLifecycleManager",
    "AlertRunResult",
    "DetectedAlert",
    "DetectedInsuranceAlert",
]
