"""
Sequencer 테스트

계정별 결정적 순서 (timestamp, transaction_id)와 모호성 탐지를 검증합니다.
"""

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from anomaly_engine.domain.exceptions import (
    InvalidTransactionError,
    OrderingAmbiguousError,
    StoreUnavailableError,
)
from anomaly_engine.domain.models.engine_config import RetryPolicy
from anomaly_engine.domain.models.transaction import Transaction
from anomaly_engine.domain.ports.transaction_store import TransactionStore
from anomaly_engine.domain.services.sequencer import Sequencer, order_transactions

BASE = datetime(2024, 1, 1, 10, 0, 0, tzinfo=UTC)

NO_DELAY = RetryPolicy(max_attempts=3, base_delay_seconds=0, max_delay_seconds=0)


def _txn(transaction_id: str, minutes: int, amount: str = "10.00") -> Transaction:
    return Transaction(
        transaction_id=transaction_id,
        account_id=1,
        amount=Decimal(amount),
        timestamp=BASE + timedelta(minutes=minutes),
        merchant="Shop",
        location="NY",
        transaction_type="Debit",
    )


class TestOrderTransactions:
    """order_transactions() 테스트"""

    def test_시각_오름차순_동일시각은_ID_사전순(self) -> None:
        """
        GIVEN: 시각이 섞여 있고 동일 시각 거래가 있는 입력
        WHEN: order_transactions()를 호출하면
        THEN: timestamp 오름차순, 동일 시각은 transaction_id 사전순이어야 한다
        """
        # GIVEN
        transactions = [_txn("T-3", 5), _txn("T-2", 0), _txn("T-10", 0), _txn("T-1", 10)]

        # WHEN
        ordered = order_transactions(transactions)

        # THEN
        assert [t.transaction_id for t in ordered] == ["T-10", "T-2", "T-3", "T-1"]

    def test_입력을_변경하지_않음(self) -> None:
        transactions = [_txn("T-2", 5), _txn("T-1", 0)]

        order_transactions(transactions)

        assert [t.transaction_id for t in transactions] == ["T-2", "T-1"]

    def test_같은_입력은_항상_같은_순서(self) -> None:
        transactions = [_txn("B", 0), _txn("A", 0), _txn("C", 0)]

        assert order_transactions(transactions) == order_transactions(list(reversed(transactions)))

    def test_완전_중복은_모호성_오류(self) -> None:
        """
        GIVEN: timestamp와 transaction_id가 모두 같은 두 거래
        WHEN: order_transactions()를 호출하면
        THEN: 임의로 해소하지 않고 OrderingAmbiguousError가 발생해야 한다
        """
        with pytest.raises(OrderingAmbiguousError) as exc_info:
            order_transactions([_txn("T-1", 0), _txn("T-1", 0)])

        assert exc_info.value.transaction_id == "T-1"
        assert exc_info.value.account_id == 1

    def test_빈_입력(self) -> None:
        assert order_transactions([]) == []


class TestSequencer:
    """Sequencer.sequence() 테스트"""

    @pytest.mark.asyncio
    async def test_저장소_거래를_정렬하여_yield(self) -> None:
        # GIVEN
        store = AsyncMock(spec=TransactionStore)
        store.list_by_account = AsyncMock(return_value=[_txn("T-2", 5), _txn("T-1", 0)])
        sequencer = Sequencer(store, NO_DELAY)

        # WHEN
        result = [t.transaction_id async for t in sequencer.sequence(1)]

        # THEN
        assert result == ["T-1", "T-2"]
        store.list_by_account.assert_awaited_once_with(1)

    @pytest.mark.asyncio
    async def test_재시작_가능(self) -> None:
        """
        GIVEN: 두 번째 읽기 전에 거래가 추가되는 저장소
        WHEN: sequence()를 두 번 호출하면
        THEN: 매번 저장소를 다시 읽어 새 거래까지 반환해야 한다
        """
        # GIVEN
        store = AsyncMock(spec=TransactionStore)
        store.list_by_account = AsyncMock(
            side_effect=[[_txn("T-1", 0)], [_txn("T-1", 0), _txn("T-2", 1)]]
        )
        sequencer = Sequencer(store, NO_DELAY)

        # WHEN
        first = [t.transaction_id async for t in sequencer.sequence(1)]
        second = [t.transaction_id async for t in sequencer.sequence(1)]

        # THEN
        assert first == ["T-1"]
        assert second == ["T-1", "T-2"]

    @pytest.mark.asyncio
    async def test_일시적_저장소_오류는_재시도(self) -> None:
        # GIVEN
        store = AsyncMock(spec=TransactionStore)
        store.list_by_account = AsyncMock(
            side_effect=[StoreUnavailableError("timeout"), [_txn("T-1", 0)]]
        )
        retries = []
        sequencer = Sequencer(store, NO_DELAY, on_retry=lambda attempt, error: retries.append(attempt))

        # WHEN
        result = [t.transaction_id async for t in sequencer.sequence(1)]

        # THEN
        assert result == ["T-1"]
        assert retries == [1]

    @pytest.mark.asyncio
    async def test_제외된_거래는_yield하지_않음(self) -> None:
        store = AsyncMock(spec=TransactionStore)
        store.list_by_account = AsyncMock(return_value=[_txn("T-2", 5), _txn("T-1", 0)])
        sequencer = Sequencer(store, NO_DELAY)

        result = [t.transaction_id async for t in sequencer.sequence(1, exclude={"T-1"})]

        assert result == ["T-2"]

    @pytest.mark.asyncio
    async def test_제외된_거래도_모호성_검사에_포함(self) -> None:
        """
        GIVEN: 이미 제외 목록에 있는 T-1이 두 번 기록된 저장소
        WHEN: sequence()를 호출하면
        THEN: 제외 여부와 무관하게 OrderingAmbiguousError가 발생해야 한다
        """
        # GIVEN
        store = AsyncMock(spec=TransactionStore)
        store.list_by_account = AsyncMock(
            return_value=[_txn("T-1", 0), _txn("T-2", 5), _txn("T-1", 0)]
        )
        sequencer = Sequencer(store, NO_DELAY)

        # WHEN / THEN
        with pytest.raises(OrderingAmbiguousError) as exc_info:
            [t async for t in sequencer.sequence(1, exclude={"T-1"})]

        assert exc_info.value.transaction_id == "T-1"

    @pytest.mark.asyncio
    async def test_유효하지_않은_거래는_정렬_전에_보고(self) -> None:
        """
        GIVEN: 금액 정밀도가 잘못된 거래가 섞인 저장소
        WHEN: on_invalid 콜백과 함께 sequence()를 호출하면
        THEN: 유효하지 않은 거래는 콜백으로 한 번 보고되고 yield 되지 않아야 한다
        """
        # GIVEN
        store = AsyncMock(spec=TransactionStore)
        store.list_by_account = AsyncMock(
            return_value=[_txn("T-BAD", 1, "1.001"), _txn("T-OLD", 2, "1.001"), _txn("T-1", 0)]
        )
        sequencer = Sequencer(store, NO_DELAY)
        reported = []

        # WHEN
        result = [
            t.transaction_id
            async for t in sequencer.sequence(
                1, exclude={"T-OLD"}, on_invalid=lambda t, e: reported.append((t.transaction_id, e))
            )
        ]

        # THEN
        assert result == ["T-1"]
        assert [transaction_id for transaction_id, _ in reported] == ["T-BAD"]
        assert isinstance(reported[0][1], InvalidTransactionError)
