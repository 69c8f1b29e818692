"""
Kafka Alert Publisher 구현

Alert Store에 기록된 Alert를 JSON으로 직렬화하여 Kafka로 발행합니다.
AlertPublisher 인터페이스를 구현하며, confluent-kafka 라이브러리를 사용합니다.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from confluent_kafka import KafkaException, Producer
from prometheus_client import Counter, Gauge, Histogram

from anomaly_engine.domain.exceptions import PublishException
from anomaly_engine.domain.models.alert import Alert
from anomaly_engine.domain.ports.alert_publisher import AlertPublisher
from anomaly_engine.infrastructure.serialization.json_utils import json_dumps_bytes
from anomaly_engine.infrastructure.serialization.record_mapper import alert_to_record

logger = logging.getLogger(__name__)

DEFAULT_ALERT_TOPIC = "fraud.alerts.v1"

# ===== Prometheus Metrics =====
KAFKA_PUBLISH_ATTEMPTS = Counter(
    "alert_publisher_publish_attempts_total",
    "Number of alert publish attempts",
    ["topic"],
)

KAFKA_PUBLISH_ENQUEUED = Counter(
    "alert_publisher_enqueued_total",
    "Number of alerts enqueued to producer",
    ["topic"],
)

KAFKA_PUBLISH_BUFFER_FULL = Counter(
    "alert_publisher_buffer_full_total",
    "Number of BufferError occurrences during publish",
    ["topic"],
)

KAFKA_QUEUE_LENGTH = Gauge(
    "alert_publisher_queue_length",
    "Current length of producer internal queue",
)

KAFKA_DELIVERY_RESULTS = Counter(
    "alert_publisher_delivery_results_total",
    "Delivery results labeled by topic/result/error_code",
    ["topic", "result", "error_code"],
)

KAFKA_PUBLISH_LATENCY = Histogram(
    "alert_publisher_publish_latency_seconds",
    "Latency of alert publish operations",
    ["topic"],
)


class KafkaAlertPublisher(AlertPublisher):
    """
    Kafka Alert Publisher

    파티션 키는 account_id이므로 같은 계정의 Alert는 같은 파티션에서 순서가 유지됩니다.

    Features:
        - 비동기 메시지 발행
        - 자동 재시도 (큐가 가득 찬 경우)
        - 전송 성공/실패 콜백
        - 리소스 관리 (컨텍스트 매니저 지원)

    Attributes:
        _config: Kafka Producer 설정
        _producer: confluent-kafka Producer 인스턴스
        _topic: 발행 대상 토픽
    """

    MAX_BUFFER_RETRIES = 10

    def __init__(self, config: Dict[str, Any], topic: str = DEFAULT_ALERT_TOPIC) -> None:
        """
        KafkaAlertPublisher를 초기화합니다.

        Args:
            config: Kafka Producer 설정 딕셔너리
                - bootstrap.servers: Kafka 브로커 주소 (필수)
                - client.id: 클라이언트 식별자
                - 기타 confluent-kafka Producer 설정
            topic: 발행 대상 토픽 (기본값: fraud.alerts.v1)

        Raises:
            ValueError: 필수 설정값이 누락된 경우
            PublishException: Producer 생성에 실패한 경우
        """
        if "bootstrap.servers" not in config:
            raise ValueError("bootstrap.servers is required in Kafka config")

        recommended_defaults: Dict[str, Any] = {
            "acks": "all",
            "enable.idempotence": True,
            "linger.ms": 5,
            "compression.type": "lz4",
        }

        self._topic = topic
        self._config = {**recommended_defaults, **config}
        self._config["error_cb"] = self._error_callback

        try:
            self._producer = Producer(self._config)
            logger.info(f"Initialized Kafka alert publisher: {config.get('bootstrap.servers')} -> {topic}")
        except Exception as e:
            logger.error(f"Failed to initialize Kafka Producer: {e}", exc_info=True)
            raise PublishException("Failed to initialize Kafka Producer", cause=e)

    @property
    def topic(self) -> str:
        return self._topic

    async def publish(self, alert: Alert) -> None:
        """
        Alert를 Kafka로 발행합니다.

        Args:
            alert: 발행할 Alert

        Raises:
            PublishException: 발행에 실패한 경우
        """
        if self._producer is None:
            raise PublishException("Kafka alert publisher is closed")

        topic = self._topic
        key = str(alert.account_id).encode("utf-8")

        try:
            value = json_dumps_bytes(alert_to_record(alert))
            KAFKA_PUBLISH_ATTEMPTS.labels(topic=topic).inc()

            with KAFKA_PUBLISH_LATENCY.labels(topic=topic).time():
                retry_count = 0
                while retry_count < self.MAX_BUFFER_RETRIES:
                    try:
                        self._producer.produce(
                            topic=topic,
                            key=key,
                            value=value,
                            callback=self._delivery_callback,
                        )
                        KAFKA_PUBLISH_ENQUEUED.labels(topic=topic).inc()
                        break
                    except BufferError:
                        # 큐가 가득 찬 경우 poll()로 공간 확보
                        logger.debug(f"Buffer full, polling... (retry {retry_count + 1})")
                        KAFKA_PUBLISH_BUFFER_FULL.labels(topic=topic).inc()
                        self._producer.poll(0.1)
                        retry_count += 1
                        await asyncio.sleep(0.01)

            if retry_count >= self.MAX_BUFFER_RETRIES:
                raise PublishException(
                    f"Failed to publish alert {alert.alert_id} to {topic}: "
                    f"Buffer full after {self.MAX_BUFFER_RETRIES} retries"
                )

            self._producer.poll(0)
            KAFKA_QUEUE_LENGTH.set(len(self._producer))
            logger.debug(f"Published alert {alert.alert_id} to topic: {topic}")

        except PublishException:
            raise
        except KafkaException as e:
            logger.error(f"Kafka error while publishing to {topic}: {e}", exc_info=True)
            raise PublishException(f"Failed to publish alert {alert.alert_id} to {topic}", cause=e)
        except Exception as e:
            logger.error(f"Unexpected error while publishing to {topic}: {e}", exc_info=True)
            raise PublishException(f"Failed to publish alert {alert.alert_id} to {topic}", cause=e)

    async def flush(self, timeout: float = 5.0) -> int:
        """
        대기 중인 모든 메시지를 강제로 전송합니다.

        Args:
            timeout: 최대 대기 시간 (초)

        Returns:
            전송되지 못한 메시지 수 (0이면 모두 성공)

        Raises:
            PublishException: flush 작업 중 오류가 발생한 경우
        """
        if self._producer is None:
            return 0

        try:
            remaining = await asyncio.to_thread(self._producer.flush, timeout)
        except KafkaException as e:
            logger.error(f"Kafka error during flush: {e}", exc_info=True)
            raise PublishException("Failed to flush alerts", cause=e)

        if remaining > 0:
            logger.warning(f"Failed to flush {remaining} alerts within {timeout}s timeout")
        else:
            logger.debug("Successfully flushed all alerts")
        return remaining

    async def close(self) -> None:
        """
        Producer를 종료합니다. 종료 전에 대기 중인 메시지를 flush합니다.
        """
        if self._producer is None:
            logger.debug("Producer already closed")
            return

        try:
            remaining = await self.flush(timeout=10.0)
            if remaining > 0:
                logger.warning(f"Closed producer with {remaining} unsent alerts")
        except PublishException as e:
            logger.error(f"Error while closing Kafka alert publisher: {e}")
        finally:
            self._producer = None
            logger.info("Kafka alert publisher closed")

    # ========== Private Methods ==========

    def _delivery_callback(self, err: Optional[Any], msg: Any) -> None:
        """메시지 전송 성공/실패 콜백"""
        topic_label = msg.topic() if msg is not None else self._topic
        if err is not None:
            logger.error(f"Alert delivery failed: {err.str()} (error code: {err.code()})")
            KAFKA_DELIVERY_RESULTS.labels(
                topic=topic_label, result="failure", error_code=str(err.code())
            ).inc()
        else:
            logger.debug(f"Alert delivered to {topic_label} [partition: {msg.partition()}]")
            KAFKA_DELIVERY_RESULTS.labels(topic=topic_label, result="success", error_code="none").inc()

    def _error_callback(self, err: Any) -> None:
        logger.error(f"Kafka error: {err.str()} (error code: {err.code()})")

    # ========== Context Manager Support ==========

    async def __aenter__(self) -> "KafkaAlertPublisher":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
