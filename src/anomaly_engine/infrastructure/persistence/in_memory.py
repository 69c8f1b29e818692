"""
인메모리 저장소 어댑터

테스트와 단일 프로세스 실행을 위한 TransactionStore / AlertStore 구현입니다.
"""

import asyncio
import logging

from anomaly_engine.domain.exceptions import DuplicateTransactionIdError
from anomaly_engine.domain.models.alert import Alert, AlertReason
from anomaly_engine.domain.models.transaction import Transaction
from anomaly_engine.domain.ports.alert_store import AlertStore
from anomaly_engine.domain.ports.transaction_store import TransactionStore

logger = logging.getLogger(__name__)


class InMemoryTransactionStore(TransactionStore):
    """
    인메모리 거래 저장소

    Attributes:
        _by_id: transaction_id → Transaction
        _by_account: account_id → 추가된 순서의 Transaction 리스트
    """

    def __init__(self, transactions: list[Transaction] | None = None) -> None:
        self._lock = asyncio.Lock()
        self._by_id: dict[str, Transaction] = {}
        self._by_account: dict[int, list[Transaction]] = {}

        for transaction in transactions or []:
            self._add(transaction)

    def _add(self, transaction: Transaction) -> None:
        if transaction.transaction_id in self._by_id:
            raise DuplicateTransactionIdError(transaction.transaction_id)
        self._by_id[transaction.transaction_id] = transaction
        self._by_account.setdefault(transaction.account_id, []).append(transaction)

    async def list_by_account(self, account_id: int) -> list[Transaction]:
        return list(self._by_account.get(account_id, []))

    async def append(self, transaction: Transaction) -> None:
        async with self._lock:
            self._add(transaction)
        logger.debug(f"Appended transaction {transaction.transaction_id}")

    async def list_account_ids(self) -> list[int]:
        return sorted(self._by_account)

    def __len__(self) -> int:
        return len(self._by_id)


class InMemoryAlertStore(AlertStore):
    """인메모리 알림 저장소 (추가 순서 유지)"""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._alerts: list[Alert] = []
        self._keys: set[tuple[str, AlertReason]] = set()

    async def append(self, alert: Alert) -> None:
        async with self._lock:
            self._alerts.append(alert)
            self._keys.add(alert.dedup_key)

    async def exists(self, transaction_id: str, reason: AlertReason) -> bool:
        return (transaction_id, reason) in self._keys

    async def list_by_account(self, account_id: int) -> list[Alert]:
        return [alert for alert in self._alerts if alert.account_id == account_id]

    def all(self) -> list[Alert]:
        return list(self._alerts)

    def __len__(self) -> int:
        return len(self._alerts)
