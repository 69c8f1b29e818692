"""
이상 거래 알림 모델

Alert Emitter만 생성할 수 있는 불변 알림 레코드입니다.
(transaction_id, reason) 쌍이 중복 제거의 기준이 됩니다.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from anomaly_engine.domain.models.transaction import Transaction


class AlertReason(Enum):
    """
    알림 사유

    값은 Alert Store의 alert_reason 컬럼에 그대로 저장됩니다.

    Attributes:
        HIGH_TRANSACTION_AMOUNT: 금액이 계정 기준선의 N배를 초과
        LOCATION_CHANGE: 직전 거래와 위치가 다름
        RAPID_SUCCESSION: 직전 거래와의 간격이 임계값 미만
    """

    HIGH_TRANSACTION_AMOUNT = "HighTransactionAmount"
    LOCATION_CHANGE = "LocationChange"
    RAPID_SUCCESSION = "RapidSuccession"


@dataclass(frozen=True)
class Alert:
    """
    알림 레코드

    Attributes:
        alert_id: 생성 시 부여되는 고유 ID
        transaction_id: 알림 대상 거래 ID (저장소 간 외래키는 강제하지 않음)
        account_id: 계정 ID
        reason: 알림 사유
        created_at: 알림 생성 시각 (발행 시점에 부여)
    """

    alert_id: str
    transaction_id: str
    account_id: int
    reason: AlertReason
    created_at: datetime

    @classmethod
    def create(cls, transaction: Transaction, reason: AlertReason, created_at: datetime) -> "Alert":
        """
        거래와 사유로부터 새 Alert를 생성합니다.

        Args:
            transaction: 알림 대상 거래
            reason: 알림 사유
            created_at: 생성 시각

        Returns:
            새 alert_id가 부여된 Alert
        """
        return cls(
            alert_id=uuid.uuid4().hex,
            transaction_id=transaction.transaction_id,
            account_id=transaction.account_id,
            reason=reason,
            created_at=created_at,
        )

    @property
    def dedup_key(self) -> tuple[str, AlertReason]:
        """중복 제거 키 (transaction_id, reason)"""
        return (self.transaction_id, self.reason)

    def __str__(self) -> str:
        return (
            f"Alert(transaction_id={self.transaction_id}, account_id={self.account_id}, "
            f"reason={self.reason.value})"
        )
