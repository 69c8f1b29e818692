"""
TransactionEvaluator - 거래 한 건의 상태 갱신 및 규칙 평가

Baseline Calculator, History Tracker, 최근 금액 집합을 순서대로 갱신하면서
갱신 전 스냅샷으로 규칙을 평가합니다. asyncio 엔진과 Flink 잡이 함께 사용합니다.
"""

from anomaly_engine.domain.models.account_state import AccountState, PriorSnapshot
from anomaly_engine.domain.models.engine_config import EngineConfig
from anomaly_engine.domain.models.transaction import Transaction
from anomaly_engine.domain.services.baseline import BaselineCalculator
from anomaly_engine.domain.services.history import HistoryTracker
from anomaly_engine.domain.services.rules import RuleEvaluation, evaluate_rules


class TransactionEvaluator:
    """
    거래 평가기

    evaluate()는 전달받은 AccountState를 제자리에서 갱신합니다.
    원자성이 필요한 호출자는 AccountState.clone()으로 만든 스테이징 복사본을 전달해야 합니다.

    Attributes:
        _config: 규칙 임계값 설정
        _baseline: 실행 평균 계산기
        _history: 직전 관측값 추적기
    """

    def __init__(self, config: EngineConfig) -> None:
        self._config = config
        self._baseline = BaselineCalculator()
        self._history = HistoryTracker()

    def evaluate(self, state: AccountState, transaction: Transaction) -> RuleEvaluation:
        """
        상태를 갱신하고 규칙 평가 결과를 반환합니다.

        Args:
            state: 해당 계정의 (스테이징) 상태
            transaction: 검증된 현재 거래

        Returns:
            RuleEvaluation
        """
        prior_mean, prior_count = self._baseline.update(state, transaction.amount)
        prior_location, prior_timestamp = self._history.update(
            state, transaction.location, transaction.timestamp
        )
        state.recent_amounts.add(transaction.amount)
        state.mark_finalized(transaction)

        snapshot = PriorSnapshot(
            prior_mean=prior_mean,
            prior_count=prior_count,
            prior_location=prior_location,
            prior_timestamp=prior_timestamp,
        )
        return evaluate_rules(transaction, snapshot, state.recent_amounts, self._config)
