"""
AnomalyDetectionFunction - 계정별 이상 거래 탐지 프로세서

KeyedProcessFunction을 사용하여 account_id로 분할된 스트림에서
asyncio 엔진과 같은 TransactionEvaluator로 거래를 평가합니다.
"""

import logging
from datetime import UTC, datetime
from typing import Iterable

from pyflink.common.typeinfo import Types
from pyflink.datastream import RuntimeContext
from pyflink.datastream.functions import KeyedProcessFunction
from pyflink.datastream.state import ListStateDescriptor, ValueStateDescriptor

from anomaly_engine.domain.exceptions import (
    AnomalyEngineException,
    InvalidTransactionError,
    OutOfOrderTransactionError,
)
from anomaly_engine.domain.models.account_state import AccountState, RecentAmounts
from anomaly_engine.domain.models.alert import Alert
from anomaly_engine.domain.models.engine_config import EngineConfig
from anomaly_engine.domain.models.transaction import Transaction
from anomaly_engine.domain.services.evaluator import TransactionEvaluator
from anomaly_engine.infrastructure.monitoring.metrics import TRANSACTIONS_EVALUATED

logger = logging.getLogger(__name__)


def to_epoch_millis(timestamp: datetime) -> int:
    return int(timestamp.timestamp() * 1000)


class AnomalyDetectionFunction(KeyedProcessFunction):
    """
    이상 거래 탐지 KeyedProcessFunction

    상태 관리:
        - account_state: 계정의 AccountState (실행 평균, 직전 위치/시각, 최근 금액, 순서 커서)
        - pending_state: lenient 모드에서 watermark를 기다리는 거래

    순서 정책:
        - strict: 도착 즉시 평가. 순서 커서보다 이른 거래는 버림
        - lenient: 거래 시각에 event-time 타이머를 등록하고,
          watermark가 지나면 (timestamp, transaction_id) 순으로 평가
    """

    def __init__(self, config: EngineConfig | None = None) -> None:
        self._config = config or EngineConfig()
        self._evaluator = None
        self.account_state = None
        self.pending_state = None

    def open(self, runtime_context: RuntimeContext) -> None:
        """
        상태 변수를 등록합니다.

        Args:
            runtime_context: 런타임 컨텍스트
        """
        self._evaluator = TransactionEvaluator(self._config)

        self.account_state = runtime_context.get_state(
            ValueStateDescriptor("account-state", Types.PICKLED_BYTE_ARRAY())
        )
        self.pending_state = runtime_context.get_list_state(
            ListStateDescriptor("pending-transactions", Types.PICKLED_BYTE_ARRAY())
        )

    def process_element(
        self, transaction: Transaction, ctx: "KeyedProcessFunction.Context"
    ) -> Iterable[Alert]:
        """
        거래를 평가하거나 (lenient 모드) watermark까지 보류합니다.

        Args:
            transaction: 처리할 거래
            ctx: 프로세스 컨텍스트

        Yields:
            Alert: 발동한 규칙마다 하나
        """
        try:
            transaction.validate()
        except InvalidTransactionError as e:
            self._skip(transaction, e)
            return

        if self._config.is_lenient:
            self.pending_state.add(transaction)
            ctx.timer_service().register_event_time_timer(to_epoch_millis(transaction.timestamp))
            return

        yield from self._finalize(ctx.get_current_key(), transaction)

    def on_timer(
        self, timestamp: int, ctx: "KeyedProcessFunction.OnTimerContext"
    ) -> Iterable[Alert]:
        """
        watermark가 지난 보류 거래를 순서대로 평가합니다.

        Args:
            timestamp: 타이머가 발동된 시간 (밀리초)
            ctx: 타이머 컨텍스트

        Yields:
            Alert: 발동한 규칙마다 하나
        """
        pending = list(self.pending_state.get() or [])
        ready = sorted(
            (t for t in pending if to_epoch_millis(t.timestamp) <= timestamp),
            key=lambda t: t.sort_key,
        )
        remaining = [t for t in pending if to_epoch_millis(t.timestamp) > timestamp]

        if remaining:
            self.pending_state.update(remaining)
        else:
            self.pending_state.clear()

        for transaction in ready:
            yield from self._finalize(ctx.get_current_key(), transaction)

    def _finalize(self, account_id: int, transaction: Transaction) -> Iterable[Alert]:
        state = self.account_state.value()
        if state is None:
            state = AccountState(
                account_id=account_id, recent_amounts=RecentAmounts(self._config.rank_window)
            )

        if state.precedes_cursor(transaction):
            self._skip(
                transaction,
                OutOfOrderTransactionError(
                    account_id=account_id,
                    transaction_id=transaction.transaction_id,
                    message=(
                        f"Transaction {transaction.transaction_id} at "
                        f"{transaction.timestamp.isoformat()} precedes finalized order of "
                        f"account {account_id}"
                    ),
                ),
            )
            return

        evaluation = self._evaluator.evaluate(state, transaction)
        self.account_state.update(state)
        TRANSACTIONS_EVALUATED.labels(result="flagged" if evaluation.is_flagged else "clean").inc()

        created_at = datetime.now(UTC)
        for reason in evaluation.reasons:
            yield Alert.create(transaction, reason, created_at)

    @staticmethod
    def _skip(transaction: Transaction, error: AnomalyEngineException) -> None:
        TRANSACTIONS_EVALUATED.labels(result="skipped").inc()
        logger.warning(f"Skipping transaction {transaction.transaction_id!r}: {error}")
