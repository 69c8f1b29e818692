"""
파일 기반 이상 거래 탐지 유즈케이스

JSON Lines 거래 파일을 끝까지 평가하여 Alert 파일에 기록하고 계정별 리포트를 반환합니다.
"""

import logging
from pathlib import Path
from typing import Any

from anomaly_engine.application.services.detection_engine import DetectionEngine
from anomaly_engine.domain.exceptions import ValidationException
from anomaly_engine.domain.models.engine_config import EngineConfig
from anomaly_engine.domain.models.report import AccountReport
from anomaly_engine.infrastructure.kafka.kafka_alert_publisher import KafkaAlertPublisher
from anomaly_engine.infrastructure.persistence.jsonl_store import (
    JsonLinesAlertStore,
    JsonLinesTransactionStore,
)

logger = logging.getLogger(__name__)


async def detect_anomalies(
    transactions_path: str | Path,
    alerts_path: str | Path,
    config: EngineConfig | None = None,
    kafka_config: dict[str, Any] | None = None,
) -> list[AccountReport]:
    """
    파일 기반 이상 거래 탐지 유즈케이스

    거래 파일을 스트림 종료(final)로 간주하여 모든 거래를 확정합니다.
    같은 파일로 다시 실행하면 이미 기록된 Alert는 중복 기록되지 않습니다.

    Args:
        transactions_path: 거래 JSON Lines 파일 경로
        alerts_path: Alert JSON Lines 파일 경로 (없으면 생성)
        config: 엔진 설정 (기본값: EngineConfig())
        kafka_config: 지정하면 기록된 Alert를 Kafka로도 발행

    Returns:
        계정 ID 순 AccountReport 리스트

    Raises:
        ValidationException: 거래 파일이 존재하지 않는 경우
        StoreUnavailableError: 저장소 I/O가 재시도 후에도 실패한 경우

    Examples:
        >>> reports = await detect_anomalies("transactions.jsonl", "alerts.jsonl")
        >>> reports[0].alert_count
        2
    """
    # 1. 입력 검증
    if not Path(transactions_path).exists():
        raise ValidationException(f"Transactions file not found: {transactions_path}")

    # 2. 의존성 생성
    transaction_store = await JsonLinesTransactionStore.open(transactions_path)
    alert_store = await JsonLinesAlertStore.open(alerts_path)
    publisher = KafkaAlertPublisher(kafka_config) if kafka_config else None

    engine = DetectionEngine(transaction_store, alert_store, config=config, publisher=publisher)

    # 3. 실행
    try:
        results = await engine.run(final=True)

        halted = [account_id for account_id, result in results.items() if result.halted]
        if halted:
            logger.error(f"Accounts halted during detection: {halted}")

        status = engine.get_status()
        logger.info(
            f"Detection finished: processed={status['processed']} skipped={status['skipped']} "
            f"alerts={status['alerts']}"
        )
        return await engine.report_all()
    finally:
        if publisher is not None:
            await publisher.close()
