"""Application Layer Package"""

from anomaly_engine.application.services.detection_engine import (
    AccountProcessingResult,
    DetectionEngine,
)
from anomaly_engine.application.services.detection_service import DetectionService
from anomaly_engine.application.use_cases.detect_anomalies import detect_anomalies

__all__ = [
    "AccountProcessingResult",
    "DetectionEngine",
    "DetectionService",
    "detect_anomalies",
]
