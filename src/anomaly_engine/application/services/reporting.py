"""
Reporting Aggregator - 계정별 요약 리포트

Transaction Store와 Alert Store를 직접 읽어 감사용 요약을 계산합니다.
탐지 엔진의 상태와 무관하게 저장소만으로 재계산하므로,
엔진 처리 도중 호출하면 직전 처리 결과를 반영하지 않을 수 있습니다 (eventual consistency).
"""

import logging
from collections import Counter
from collections.abc import Iterable
from decimal import Decimal

from anomaly_engine.domain.exceptions import InvalidTransactionError
from anomaly_engine.domain.models.engine_config import RetryPolicy
from anomaly_engine.domain.models.report import AccountReport
from anomaly_engine.domain.models.transaction import Transaction
from anomaly_engine.domain.ports.alert_store import AlertStore
from anomaly_engine.domain.ports.transaction_store import TransactionStore
from anomaly_engine.domain.services.retry import call_with_retry

logger = logging.getLogger(__name__)


class ReportingAggregator:
    """
    읽기 전용 리포트 집계기

    실제 사기 라벨(is_fraud)을 읽는 유일한 경로입니다.

    Attributes:
        _transaction_store: 거래 저장소
        _alert_store: 알림 저장소
        _retry_policy: 저장소 읽기 재시도 정책
    """

    def __init__(
        self,
        transaction_store: TransactionStore,
        alert_store: AlertStore,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._transaction_store = transaction_store
        self._alert_store = alert_store
        self._retry_policy = retry_policy or RetryPolicy()

    async def report(self, account_id: int) -> AccountReport:
        """
        계정 요약 리포트를 생성합니다.

        Args:
            account_id: 계정 ID

        Returns:
            AccountReport (거래가 없으면 count 0, 평균 None)

        Raises:
            StoreUnavailableError: 재시도 후에도 저장소를 읽을 수 없는 경우
        """
        transactions = await call_with_retry(
            lambda: self._transaction_store.list_by_account(account_id),
            self._retry_policy,
            f"read transactions for report of account {account_id}",
        )
        alerts = await call_with_retry(
            lambda: self._alert_store.list_by_account(account_id),
            self._retry_policy,
            f"read alerts for report of account {account_id}",
        )

        valid = self._valid_only(transactions)
        count = len(valid)
        average = sum((t.amount for t in valid), Decimal(0)) / count if count else None
        by_reason = Counter(alert.reason.value for alert in alerts)

        return AccountReport(
            account_id=account_id,
            transaction_count=count,
            average_amount=average,
            fraud_attempts=sum(1 for t in valid if t.is_fraud),
            alert_count=len(alerts),
            alerts_by_reason=dict(by_reason),
            average_seconds_between_transactions=self._average_gap_seconds(valid),
        )

    async def report_all(self, account_ids: Iterable[int] | None = None) -> list[AccountReport]:
        """
        여러 계정의 리포트를 계정 ID 순으로 생성합니다.

        Args:
            account_ids: 대상 계정 (None이면 Transaction Store의 모든 계정)
        """
        if account_ids is None:
            account_ids = await call_with_retry(
                self._transaction_store.list_account_ids,
                self._retry_policy,
                "list account ids for report",
            )

        return [await self.report(account_id) for account_id in sorted(set(account_ids))]

    @staticmethod
    def _valid_only(transactions: list[Transaction]) -> list[Transaction]:
        valid = []
        for transaction in transactions:
            try:
                transaction.validate()
            except InvalidTransactionError as e:
                logger.debug(f"Excluding invalid transaction from report: {e}")
                continue
            valid.append(transaction)
        return valid

    @staticmethod
    def _average_gap_seconds(transactions: list[Transaction]) -> float | None:
        """연속 거래 간 평균 간격 (초). 거래가 2건 미만이면 None"""
        if len(transactions) < 2:
            return None
        timestamps = sorted(t.timestamp for t in transactions)
        return (timestamps[-1] - timestamps[0]).total_seconds() / (len(timestamps) - 1)
