"""
규칙 평가기 (Rule Evaluators)

각 규칙은 (현재 거래, 이전 상태 스냅샷) → 결과의 순수 함수이며 서로 독립적으로 평가됩니다.
하나의 거래가 0개, 1개 또는 여러 규칙을 동시에 발동시킬 수 있습니다.

    - Location Change: 직전 위치와 다르면 발동 (대소문자 구분)
    - Amount Rank: 최근 금액 내 백분위 순위 (0 = 최고액). 알림을 만들지 않는 연속 점수
    - Amount Anomaly: amount > multiplier × 이전 평균이면 발동
    - Rapid Succession: 직전 거래와의 간격이 임계값 미만이면 발동

첫 거래(스냅샷에 이전 값이 없음)는 어떤 규칙도 발동시키지 않습니다.
실제 사기 라벨(is_fraud)은 이 모듈에서 절대 읽지 않습니다.
"""

from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal

from anomaly_engine.domain.models.account_state import PriorSnapshot, RecentAmounts
from anomaly_engine.domain.models.alert import AlertReason
from anomaly_engine.domain.models.engine_config import EngineConfig
from anomaly_engine.domain.models.transaction import Transaction


@dataclass(frozen=True)
class RuleEvaluation:
    """
    거래 한 건에 대한 전체 규칙 평가 결과

    Attributes:
        transaction_id: 거래 ID
        account_id: 계정 ID
        amount_anomaly: Amount Anomaly 발동 여부
        location_change: Location Change 발동 여부
        rapid_succession: Rapid Succession 발동 여부
        amount_rank: 금액 백분위 순위 (0.0 = 최고액, 1.0 = 최저액)
        prior_mean: 평가에 사용한 이전 평균 (첫 거래면 None)
        prior_count: 평가에 사용한 이전 거래 수
    """

    transaction_id: str
    account_id: int
    amount_anomaly: bool
    location_change: bool
    rapid_succession: bool
    amount_rank: float
    prior_mean: Decimal | None
    prior_count: int

    @property
    def reasons(self) -> list[AlertReason]:
        """발동한 규칙의 알림 사유 (고정 순서)"""
        reasons = []
        if self.amount_anomaly:
            reasons.append(AlertReason.HIGH_TRANSACTION_AMOUNT)
        if self.location_change:
            reasons.append(AlertReason.LOCATION_CHANGE)
        if self.rapid_succession:
            reasons.append(AlertReason.RAPID_SUCCESSION)
        return reasons

    @property
    def is_flagged(self) -> bool:
        return bool(self.reasons)


def location_changed(transaction: Transaction, snapshot: PriorSnapshot) -> bool:
    """직전 위치가 있고 현재 위치와 정확히 일치하지 않으면 True"""
    return snapshot.prior_location is not None and snapshot.prior_location != transaction.location


def amount_rank(amount: Decimal, recent_amounts: RecentAmounts) -> float:
    """
    금액의 백분위 순위 (내림차순 의미)

    현재 금액을 포함한 최근 금액 집합에서
    rank = (현재 금액보다 큰 금액 수) / max(집합 크기 - 1, 1)

    동일 금액은 같은 순위를 가지며, 최고액은 0, 최저액은 1에 가깝습니다.
    표본이 하나뿐이면 0입니다.

    Args:
        amount: 현재 거래 금액
        recent_amounts: 현재 금액이 이미 반영된 최근 금액 집합

    Returns:
        0.0 ~ 1.0 사이의 순위
    """
    size = len(recent_amounts)
    if size <= 1:
        return 0.0
    return recent_amounts.count_greater(amount) / max(size - 1, 1)


def amount_anomalous(
    transaction: Transaction, snapshot: PriorSnapshot, multiplier: Decimal
) -> bool:
    """이전 거래가 있고 amount > multiplier × prior_mean이면 True"""
    if snapshot.prior_count == 0 or snapshot.prior_mean is None:
        return False
    return transaction.amount > snapshot.prior_mean * multiplier


def rapid_succession(
    transaction: Transaction, snapshot: PriorSnapshot, threshold: timedelta
) -> bool:
    """직전 거래가 있고 간격이 threshold 미만이면 True (정확히 threshold면 False)"""
    if snapshot.prior_timestamp is None:
        return False
    return (transaction.timestamp - snapshot.prior_timestamp) < threshold


def evaluate_rules(
    transaction: Transaction,
    snapshot: PriorSnapshot,
    recent_amounts: RecentAmounts,
    config: EngineConfig,
) -> RuleEvaluation:
    """
    네 가지 규칙을 모두 평가합니다.

    Args:
        transaction: 현재 거래
        snapshot: 현재 거래 반영 직전의 계정 상태
        recent_amounts: 현재 금액이 반영된 최근 금액 집합 (순위 계산용)
        config: 규칙 임계값 설정

    Returns:
        RuleEvaluation
    """
    return RuleEvaluation(
        transaction_id=transaction.transaction_id,
        account_id=transaction.account_id,
        amount_anomaly=amount_anomalous(transaction, snapshot, config.anomaly_multiplier),
        location_change=location_changed(transaction, snapshot),
        rapid_succession=rapid_succession(
            transaction, snapshot, config.rapid_succession_threshold
        ),
        amount_rank=amount_rank(transaction.amount, recent_amounts),
        prior_mean=snapshot.prior_mean,
        prior_count=snapshot.prior_count,
    )
