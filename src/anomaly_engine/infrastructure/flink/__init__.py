"""
PyFlink 이상 거래 탐지 Job

apache-flink가 설치된 환경에서만 import 할 수 있습니다 (extra: flink).
"""

from anomaly_engine.infrastructure.flink.anomaly_detector import AnomalyDetectionFunction
from anomaly_engine.infrastructure.flink.job import create_anomaly_detection_job

__all__ = ["AnomalyDetectionFunction", "create_anomaly_detection_job"]
