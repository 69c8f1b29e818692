"""
Sequencer - 계정별 거래 순서 결정

계정의 거래를 timestamp 오름차순, 동일 시각은 transaction_id 사전순으로 정렬하여
결정적인 전체 순서를 제공합니다.
"""

import logging
from collections.abc import AsyncIterator, Callable, Collection, Iterable

from anomaly_engine.domain.exceptions import (
    InvalidTransactionError,
    OrderingAmbiguousError,
    StoreUnavailableError,
)
from anomaly_engine.domain.models.engine_config import RetryPolicy
from anomaly_engine.domain.models.transaction import Transaction
from anomaly_engine.domain.ports.transaction_store import TransactionStore
from anomaly_engine.domain.services.retry import call_with_retry

logger = logging.getLogger(__name__)


def order_transactions(transactions: Iterable[Transaction]) -> list[Transaction]:
    """
    거래를 (timestamp, transaction_id) 순으로 정렬한 새 리스트를 반환합니다.

    입력은 변경하지 않으며, 같은 데이터에 대해 항상 같은 순서를 반환합니다.

    Args:
        transactions: 정렬할 거래들 (한 계정의 거래)

    Returns:
        정렬된 거래 리스트

    Raises:
        OrderingAmbiguousError: timestamp와 transaction_id가 모두 같은 거래가 있는 경우
    """
    ordered = sorted(transactions, key=lambda t: t.sort_key)

    for previous, current in zip(ordered, ordered[1:]):
        if previous.sort_key == current.sort_key:
            raise OrderingAmbiguousError(
                account_id=current.account_id,
                transaction_id=current.transaction_id,
                timestamp=current.timestamp,
            )

    return ordered


class Sequencer:
    """
    계정별 정렬 거래 스트림 제공자

    sequence()는 호출할 때마다 저장소를 다시 읽으므로 재시작 가능하며,
    유한한 비동기 이터레이터를 반환합니다.

    Attributes:
        _store: 거래 저장소
        _retry_policy: 저장소 읽기 재시도 정책
        _on_retry: 재시도 콜백 (선택)
    """

    def __init__(
        self,
        store: TransactionStore,
        retry_policy: RetryPolicy | None = None,
        on_retry: Callable[[int, StoreUnavailableError], None] | None = None,
    ) -> None:
        self._store = store
        self._retry_policy = retry_policy or RetryPolicy()
        self._on_retry = on_retry

    async def read(self, account_id: int) -> list[Transaction]:
        """
        계정의 거래를 저장소 순서 그대로 읽습니다 (재시도 포함).

        Raises:
            StoreUnavailableError: 재시도 후에도 저장소를 읽을 수 없는 경우
        """
        return await call_with_retry(
            lambda: self._store.list_by_account(account_id),
            self._retry_policy,
            f"read transactions for account {account_id}",
            self._on_retry,
        )

    async def sequence(
        self,
        account_id: int,
        exclude: Collection[str] = frozenset(),
        on_invalid: Callable[[Transaction, InvalidTransactionError], None] | None = None,
    ) -> AsyncIterator[Transaction]:
        """
        계정의 유효한 거래를 순서대로 yield 합니다.

        유효하지 않은 레코드는 정렬 전에 걸러지고 on_invalid로 보고됩니다.
        모호성 검사는 exclude에 포함된 거래까지 포함한 전체 레코드에 대해 수행되고,
        exclude에 포함된 거래는 yield 하지 않습니다.

        Args:
            account_id: 계정 ID
            exclude: 이미 확정되었거나 거부된 거래 ID
            on_invalid: 처음 발견된 유효하지 않은 거래에 대한 콜백 (선택)

        Yields:
            Transaction: 정렬된 거래

        Raises:
            OrderingAmbiguousError: 저장소 데이터 무결성 오류
            StoreUnavailableError: 재시도 후에도 저장소를 읽을 수 없는 경우
        """
        transactions = await self.read(account_id)
        logger.debug(f"Sequencing {len(transactions)} transactions for account {account_id}")

        valid = []
        for transaction in transactions:
            try:
                transaction.validate()
            except InvalidTransactionError as e:
                if transaction.transaction_id not in exclude:
                    if on_invalid is not None:
                        on_invalid(transaction, e)
                    else:
                        logger.warning(f"Dropping invalid transaction {transaction.transaction_id!r}: {e}")
                continue
            valid.append(transaction)

        for transaction in order_transactions(valid):
            if transaction.transaction_id not in exclude:
                yield transaction
