"""
TransactionEvaluator 테스트

상태 갱신 순서와 대표 탐지 시나리오를 검증합니다.
"""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

from anomaly_engine.domain.models.account_state import AccountState, RecentAmounts
from anomaly_engine.domain.models.alert import AlertReason
from anomaly_engine.domain.models.engine_config import EngineConfig
from anomaly_engine.domain.models.transaction import Transaction
from anomaly_engine.domain.services.evaluator import TransactionEvaluator

BASE = datetime(2024, 1, 1, 10, 0, 0, tzinfo=UTC)


def _txn(transaction_id: str, amount: str, minutes: int, location: str = "Seoul") -> Transaction:
    return Transaction(
        transaction_id=transaction_id,
        account_id=1,
        amount=Decimal(amount),
        timestamp=BASE + timedelta(minutes=minutes),
        merchant="Shop",
        location=location,
        transaction_type="Debit",
    )


class TestTransactionEvaluator:
    """TransactionEvaluator 테스트"""

    def test_첫_거래는_어떤_규칙도_발동하지_않음(self) -> None:
        """
        GIVEN: 빈 계정 상태
        WHEN: 큰 금액의 첫 거래를 평가하면
        THEN: 알림 사유가 없고 순위는 0이어야 한다
        """
        # GIVEN
        state = AccountState(account_id=1)

        # WHEN
        evaluation = TransactionEvaluator(EngineConfig()).evaluate(state, _txn("T-0", "99999.99", 0))

        # THEN
        assert evaluation.reasons == []
        assert evaluation.amount_rank == 0.0
        assert evaluation.prior_mean is None
        assert evaluation.prior_count == 0

    def test_연속_고액_거래_시나리오(self) -> None:
        """
        GIVEN: 10:00에 100을 결제한 계정
        WHEN: 10:03에 같은 위치에서 500을 결제하면
        THEN: HighTransactionAmount와 RapidSuccession이 발동해야 한다
        """
        # GIVEN
        evaluator = TransactionEvaluator(EngineConfig())
        state = AccountState(account_id=1)
        evaluator.evaluate(state, _txn("T-0", "100.00", 0))

        # WHEN
        evaluation = evaluator.evaluate(state, _txn("T-1", "500.00", 3))

        # THEN
        assert evaluation.reasons == [AlertReason.HIGH_TRANSACTION_AMOUNT, AlertReason.RAPID_SUCCESSION]
        assert evaluation.prior_mean == Decimal("100.00")
        assert evaluation.amount_rank == 0.0

    def test_위치_변경은_변경된_거래에서만_발동(self) -> None:
        evaluator = TransactionEvaluator(EngineConfig())
        state = AccountState(account_id=1)

        results = [
            evaluator.evaluate(state, _txn("T-0", "50.00", 0, "Seoul")),
            evaluator.evaluate(state, _txn("T-1", "55.00", 60, "Busan")),
            evaluator.evaluate(state, _txn("T-2", "60.00", 120, "Busan")),
        ]

        assert [r.reasons for r in results] == [[], [AlertReason.LOCATION_CHANGE], []]

    def test_상태가_갱신됨(self) -> None:
        evaluator = TransactionEvaluator(EngineConfig())
        state = AccountState(account_id=1, recent_amounts=RecentAmounts(window=2))
        transaction = _txn("T-0", "10.00", 0, "LA")

        evaluator.evaluate(state, transaction)

        assert state.mean == Decimal("10.00")
        assert state.count == 1
        assert state.previous_location == "LA"
        assert state.previous_timestamp == transaction.timestamp
        assert list(state.recent_amounts) == [Decimal("10.00")]
        assert state.last_key == transaction.sort_key
