"""
계정 요약 리포트 모델

감사(auditing)용 계정별 요약입니다. 저장소에서 직접 재계산되므로
탐지 엔진의 실행 평균과 교차 검증하는 데 사용할 수 있습니다.
"""

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass(frozen=True)
class AccountReport:
    """
    계정별 요약 리포트

    Attributes:
        account_id: 계정 ID
        transaction_count: 저장소에 있는 거래 수
        average_amount: 저장소에서 직접 계산한 평균 금액 (거래가 없으면 None)
        fraud_attempts: 실제 사기 라벨(is_fraud)이 설정된 거래 수
        alert_count: 발행된 Alert 수
        alerts_by_reason: 사유별 Alert 수 (alert_reason 값 → 건수)
        average_seconds_between_transactions: 연속 거래 간 평균 간격 (초, 거래가 2건 미만이면 None)
    """

    account_id: int
    transaction_count: int
    average_amount: Decimal | None
    fraud_attempts: int
    alert_count: int
    alerts_by_reason: dict[str, int] = field(default_factory=dict)
    average_seconds_between_transactions: float | None = None

    def to_dict(self) -> dict:
        return {
            "account_id": self.account_id,
            "transaction_count": self.transaction_count,
            "average_amount": str(self.average_amount) if self.average_amount is not None else None,
            "fraud_attempts": self.fraud_attempts,
            "alert_count": self.alert_count,
            "alerts_by_reason": dict(self.alerts_by_reason),
            "average_seconds_between_transactions": self.average_seconds_between_transactions,
        }
