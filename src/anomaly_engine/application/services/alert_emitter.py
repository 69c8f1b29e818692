"""
Alert Emitter - 알림 생성 및 기록

Alert Store의 유일한 쓰기 주체입니다.
(transaction_id, reason) 쌍마다 최대 한 건의 Alert만 기록되도록 보장합니다.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from anomaly_engine.domain.exceptions import PublishException
from anomaly_engine.domain.models.alert import Alert, AlertReason
from anomaly_engine.domain.models.engine_config import RetryPolicy
from anomaly_engine.domain.models.transaction import Transaction
from anomaly_engine.domain.ports.alert_publisher import AlertPublisher
from anomaly_engine.domain.ports.alert_store import AlertStore
from anomaly_engine.domain.services.retry import call_with_retry
from anomaly_engine.infrastructure.monitoring.metrics import (
    ALERT_PUBLISH_FAILURES,
    ALERTS_DEDUPLICATED,
    ALERTS_EMITTED,
    STORE_RETRIES,
)

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class AlertEmitter:
    """
    알림 발행기

    존재 확인과 기록을 하나의 재시도 단위로 묶어 실행합니다.
    기록 결과가 불확실한 실패 후 재시도하더라도 존재 확인부터 다시 수행하므로
    중복 Alert가 기록되지 않습니다.

    Attributes:
        _alert_store: Alert Store
        _retry_policy: 저장소 재시도 정책
        _publisher: 기록 후 Alert를 전달할 발행자 (선택)
        _clock: created_at 부여용 시계
        _published_count: 발행에 성공한 Alert 수
        _publish_failures: 발행에 실패한 Alert 수
    """

    def __init__(
        self,
        alert_store: AlertStore,
        retry_policy: RetryPolicy | None = None,
        publisher: AlertPublisher | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._alert_store = alert_store
        self._retry_policy = retry_policy or RetryPolicy()
        self._publisher = publisher
        self._clock = clock or _utc_now

        self._published_count = 0
        self._publish_failures = 0

    @property
    def publisher(self) -> AlertPublisher | None:
        return self._publisher

    async def emit(self, transaction: Transaction, reason: AlertReason) -> Alert | None:
        """
        거래에 대한 Alert를 기록합니다.

        Args:
            transaction: 알림 대상 거래
            reason: 알림 사유

        Returns:
            새로 기록된 Alert. 같은 (transaction_id, reason)이 이미 있으면 None

        Raises:
            StoreUnavailableError: 재시도 후에도 Alert Store에 접근할 수 없는 경우
        """

        async def append_once() -> Alert | None:
            if await self._alert_store.exists(transaction.transaction_id, reason):
                return None
            alert = Alert.create(transaction, reason, created_at=self._clock())
            await self._alert_store.append(alert)
            return alert

        alert = await call_with_retry(
            append_once,
            self._retry_policy,
            f"append {reason.value} alert for transaction {transaction.transaction_id}",
            lambda attempt, error: STORE_RETRIES.inc(),
        )

        if alert is None:
            ALERTS_DEDUPLICATED.labels(reason=reason.value).inc()
            logger.debug(
                f"Alert already recorded for {transaction.transaction_id} ({reason.value}), skipping"
            )
            return None

        ALERTS_EMITTED.labels(reason=reason.value).inc()
        logger.warning(
            f"ALERT {reason.value}: transaction={transaction.transaction_id} "
            f"account={transaction.account_id} amount={transaction.amount} "
            f"location={transaction.location}"
        )

        await self._publish(alert)
        return alert

    async def _publish(self, alert: Alert) -> None:
        """발행자에게 Alert를 전달합니다. 실패해도 기록된 Alert는 유지됩니다."""
        if self._publisher is None:
            return

        try:
            await self._publisher.publish(alert)
            self._published_count += 1
        except PublishException as e:
            self._publish_failures += 1
            ALERT_PUBLISH_FAILURES.inc()
            logger.error(
                f"Failed to publish alert {alert.alert_id} "
                f"(publish failures: {self._publish_failures}): {e}"
            )

    def get_status(self) -> dict:
        return {
            "published": self._published_count,
            "publish_failures": self._publish_failures,
        }
