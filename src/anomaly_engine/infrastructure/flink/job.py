"""
AnomalyDetectionJob - 이상 거래 탐지 Flink Job

JSON 거래 레코드 스트림을 계정별로 분할하여 이상 거래를 탐지합니다.
"""

import logging
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import List

from pyflink.common import Duration, WatermarkStrategy
from pyflink.common.typeinfo import Types
from pyflink.common.watermark_strategy import TimestampAssigner
from pyflink.datastream import DataStream, StreamExecutionEnvironment
from pyflink.datastream.functions import MapFunction

from anomaly_engine.domain.models.alert import Alert
from anomaly_engine.domain.models.engine_config import EngineConfig
from anomaly_engine.domain.models.transaction import Transaction
from anomaly_engine.infrastructure.flink.anomaly_detector import (
    AnomalyDetectionFunction,
    to_epoch_millis,
)
from anomaly_engine.infrastructure.serialization.json_utils import json_dumps, json_loads
from anomaly_engine.infrastructure.serialization.record_mapper import (
    alert_to_record,
    transaction_from_record,
    transaction_to_record,
)

logger = logging.getLogger(__name__)


def create_sample_transactions() -> List[Transaction]:
    """
    테스트용 샘플 거래 데이터를 생성합니다.

    - 계정 1: 10:00 / 10:03 서울. 10:03 거래는 RapidSuccession + HighTransactionAmount
    - 계정 2: 서울 → 부산 → 부산 (1시간 간격). 두 번째 거래만 LocationChange
    - 계정 3: 비슷한 금액, 같은 위치, 긴 간격 (정상)

    Returns:
        샘플 거래 리스트
    """
    base_time = datetime(2024, 1, 1, 10, 0, 0, tzinfo=UTC)

    def txn(transaction_id: str, account_id: int, amount: str, minutes: int, location: str) -> Transaction:
        return Transaction(
            transaction_id=transaction_id,
            account_id=account_id,
            amount=Decimal(amount),
            timestamp=base_time + timedelta(minutes=minutes),
            merchant="Sample Mart",
            location=location,
            transaction_type="purchase",
        )

    return [
        txn("T-1001", 1, "100.00", 0, "Seoul"),
        txn("T-1002", 1, "500.00", 3, "Seoul"),
        txn("T-2001", 2, "50.00", 0, "Seoul"),
        txn("T-2002", 2, "55.00", 60, "Busan"),
        txn("T-2003", 2, "60.00", 120, "Busan"),
        txn("T-3001", 3, "30.00", 0, "Incheon"),
        txn("T-3002", 3, "35.00", 30, "Incheon"),
        txn("T-3003", 3, "32.00", 90, "Incheon"),
    ]


class RecordToTransactionMapFunction(MapFunction):
    """JSON 레코드 문자열을 Transaction으로 변환하는 MapFunction"""

    def map(self, value: str) -> Transaction:
        return transaction_from_record(json_loads(value))


class AlertMapFunction(MapFunction):
    """Alert를 JSON 문자열로 변환하는 MapFunction"""

    def map(self, value: Alert) -> str:
        return json_dumps(alert_to_record(value))


class TransactionTimestampAssigner(TimestampAssigner):
    """거래 시각(밀리초)을 이벤트 시간으로 사용합니다."""

    def extract_timestamp(self, value: Transaction, record_timestamp: int) -> int:
        return to_epoch_millis(value.timestamp)


def create_watermark_strategy(config: EngineConfig) -> WatermarkStrategy:
    """
    순서 정책에 맞는 WatermarkStrategy를 생성합니다.

    lenient 모드는 grace_window만큼 늦은 거래를 허용하고,
    strict 모드는 단조 증가하는 이벤트 시간을 가정합니다.
    """
    if config.is_lenient:
        grace_millis = int(config.grace_window.total_seconds() * 1000)
        strategy = WatermarkStrategy.for_bounded_out_of_orderness(Duration.of_millis(grace_millis))
    else:
        strategy = WatermarkStrategy.for_monotonous_timestamps()
    return strategy.with_timestamp_assigner(TransactionTimestampAssigner())


def create_anomaly_detection_job(
    env: StreamExecutionEnvironment,
    config: EngineConfig | None = None,
    transactions: List[Transaction] | None = None,
) -> DataStream:
    """
    Anomaly Detection Job을 구성합니다.

    Args:
        env: Flink StreamExecutionEnvironment
        config: 엔진 설정 (기본값: EngineConfig())
        transactions: 입력 거래 (기본값: 샘플 거래)

    Returns:
        Alert JSON 문자열 스트림
    """
    config = config or EngineConfig()
    transactions = transactions if transactions is not None else create_sample_transactions()

    # PyFlink는 커스텀 객체 직렬화에 제한이 있어 JSON 문자열로 소스를 구성
    records = [json_dumps(transaction_to_record(t)) for t in transactions]
    ds = env.from_collection(collection=records, type_info=Types.STRING())

    transaction_stream = (
        ds.map(RecordToTransactionMapFunction(), output_type=Types.PICKLED_BYTE_ARRAY())
        .name("to-transaction")
        .assign_timestamps_and_watermarks(create_watermark_strategy(config))
    )

    alerts = (
        transaction_stream.key_by(lambda t: t.account_id, key_type=Types.LONG())
        .process(AnomalyDetectionFunction(config), output_type=Types.PICKLED_BYTE_ARRAY())
        .name("anomaly-detector")
    )

    formatted = alerts.map(AlertMapFunction(), output_type=Types.STRING()).name("format-alert")
    formatted.print()
    return formatted


def run_anomaly_detection_job(config: EngineConfig | None = None) -> None:
    """
    Anomaly Detection Job을 로컬 환경에서 실행합니다.

    Args:
        config: 엔진 설정 (기본값: EngineConfig())
    """
    env = StreamExecutionEnvironment.get_execution_environment()
    env.set_parallelism(1)

    create_anomaly_detection_job(env, config)

    logger.info("Starting Anomaly Detection Job (expected: alerts for accounts 1 and 2)")
    env.execute("Anomaly Detection Job")
    logger.info("Anomaly Detection Job finished")
