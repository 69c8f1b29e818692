"""
이상 거래 탐지 엔진

계정별 워커가 Sequencer 순서대로 거래를 읽어 상태를 갱신하고,
규칙을 평가하고, 발동한 규칙마다 Alert를 기록합니다.

동시성 모델:
    - 계정마다 하나의 asyncio 태스크 (run), Semaphore로 동시 실행 수 제한
    - 같은 계정에 대한 처리는 계정별 Lock으로 직렬화
    - 한 거래의 평가-기록 사이클이 원자 단위: 스테이징 복사본에서 평가하고
      모든 Alert 기록 후에만 커밋. asyncio.shield로 보호되어 취소 요청은 사이클 종료 후 반영
    - request_stop()은 거래 사이에서만 반영
"""

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime

from anomaly_engine.application.services.alert_emitter import AlertEmitter
from anomaly_engine.application.services.reporting import ReportingAggregator
from anomaly_engine.domain.exceptions import (
    AnomalyEngineException,
    InvalidTransactionError,
    OrderingAmbiguousError,
    OutOfOrderTransactionError,
    StoreUnavailableError,
)
from anomaly_engine.domain.models.account_state import AccountState, AccountStateRegistry
from anomaly_engine.domain.models.alert import Alert
from anomaly_engine.domain.models.engine_config import EngineConfig
from anomaly_engine.domain.models.report import AccountReport
from anomaly_engine.domain.models.transaction import Transaction
from anomaly_engine.domain.ports.alert_publisher import AlertPublisher
from anomaly_engine.domain.ports.alert_store import AlertStore
from anomaly_engine.domain.ports.transaction_store import TransactionStore
from anomaly_engine.domain.services.evaluator import TransactionEvaluator
from anomaly_engine.domain.services.retry import call_with_retry
from anomaly_engine.domain.services.rules import RuleEvaluation
from anomaly_engine.domain.services.sequencer import Sequencer
from anomaly_engine.infrastructure.monitoring.metrics import (
    PENDING_TRANSACTIONS,
    PROCESSING_LATENCY,
    STORE_RETRIES,
    TRANSACTIONS_EVALUATED,
    WORKERS_HALTED,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SkippedTransaction:
    """
    처리되지 않고 건너뛴 거래의 진단 정보

    Attributes:
        transaction_id: 거래 ID
        error: 건너뛴 원인 (InvalidTransactionError 또는 OutOfOrderTransactionError)
    """

    transaction_id: str
    error: AnomalyEngineException


@dataclass
class AccountProcessingResult:
    """
    process_account() 한 번의 실행 결과

    Attributes:
        account_id: 계정 ID
        processed: 확정(평가 및 커밋)된 거래 수
        skipped: 건너뛴 거래 수
        alerts: 새로 기록된 Alert
        evaluations: 확정된 거래의 규칙 평가 결과 (처리 순서)
        pending: lenient 모드에서 watermark 뒤에 남아 있는 거래 수
        diagnostics: 건너뛴 거래의 진단 정보
        halted: 치명적 오류로 계정 처리가 중단되었는지 여부
        error: 계정 처리를 중단시킨 예외
        stopped: 중단 요청으로 처리가 조기 종료되었는지 여부
    """

    account_id: int
    processed: int = 0
    skipped: int = 0
    alerts: list[Alert] = field(default_factory=list)
    evaluations: list[RuleEvaluation] = field(default_factory=list)
    pending: int = 0
    diagnostics: list[SkippedTransaction] = field(default_factory=list)
    halted: bool = False
    error: BaseException | None = None
    stopped: bool = False


class DetectionEngine:
    """
    이상 거래 탐지 엔진

    Features:
        - 계정별 결정적 순서 처리 (timestamp, transaction_id)
        - 멱등 재실행: 이미 확정된 거래는 다시 평가하지 않음
        - strict / lenient 순서 정책
        - 치명적 오류 발생 시 해당 계정만 중단 (resume_account로 재개)

    Attributes:
        _transaction_store: 거래 저장소
        _config: 엔진 설정
        _registry: 계정 상태 레지스트리
        _sequencer: 거래 순서 결정자
        _evaluator: 거래 평가기
        _emitter: Alert 발행기
        _reporting: 리포트 집계기
        _seen_ids: 계정별로 확정되었거나 거부된 거래 ID
        _halted: 중단된 계정과 원인
        _pending: 계정별 보류 거래 수
        _account_locks: 계정별 처리 락
        _stop_requested: 협조적 중단 요청 여부
    """

    def __init__(
        self,
        transaction_store: TransactionStore,
        alert_store: AlertStore,
        config: EngineConfig | None = None,
        publisher: AlertPublisher | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        DetectionEngine 초기화

        Args:
            transaction_store: 거래 저장소
            alert_store: 알림 저장소
            config: 엔진 설정 (기본값: EngineConfig())
            publisher: 기록된 Alert를 전달할 발행자 (선택)
            clock: Alert created_at 부여용 시계 (테스트용)
        """
        self._transaction_store = transaction_store
        self._config = config or EngineConfig()

        self._registry = AccountStateRegistry(self._config.rank_window)
        self._sequencer = Sequencer(transaction_store, self._config.store_retry, self._count_retry)
        self._evaluator = TransactionEvaluator(self._config)
        self._emitter = AlertEmitter(alert_store, self._config.store_retry, publisher, clock)
        self._reporting = ReportingAggregator(transaction_store, alert_store, self._config.store_retry)

        self._seen_ids: dict[int, set[str]] = {}
        self._halted: dict[int, BaseException] = {}
        self._pending: dict[int, int] = {}
        self._account_locks: dict[int, asyncio.Lock] = {}
        self._stop_requested = False

        self._processed_count = 0
        self._skipped_count = 0
        self._alert_count = 0

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def publisher(self) -> AlertPublisher | None:
        return self._emitter.publisher

    def account_state(self, account_id: int) -> AccountState | None:
        """계정의 현재(커밋된) 상태. 아직 거래가 없으면 None"""
        return self._registry.get(account_id)

    # ========== Processing ==========

    async def run(
        self, account_ids: Iterable[int] | None = None, final: bool = False
    ) -> dict[int, AccountProcessingResult]:
        """
        여러 계정을 동시에 처리합니다.

        한 계정의 실패는 다른 계정에 영향을 주지 않습니다.

        Args:
            account_ids: 처리할 계정 ID (None이면 저장소의 모든 계정)
            final: True면 lenient 모드의 보류 거래까지 모두 확정 (스트림 종료)

        Returns:
            계정 ID → AccountProcessingResult

        Raises:
            StoreUnavailableError: 계정 목록을 읽을 수 없는 경우
        """
        self._stop_requested = False

        if account_ids is None:
            account_ids = await call_with_retry(
                self._transaction_store.list_account_ids,
                self._config.store_retry,
                "list account ids",
                self._count_retry,
            )
        account_ids = list(dict.fromkeys(account_ids))

        semaphore = asyncio.Semaphore(self._config.max_concurrent_accounts)

        async def worker(account_id: int) -> AccountProcessingResult:
            async with semaphore:
                return await self.process_account(account_id, final=final)

        outcomes = await asyncio.gather(
            *(worker(account_id) for account_id in account_ids), return_exceptions=True
        )

        results: dict[int, AccountProcessingResult] = {}
        for account_id, outcome in zip(account_ids, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                results[account_id] = AccountProcessingResult(account_id=account_id, stopped=True)
            elif isinstance(outcome, BaseException):
                logger.error(
                    f"Unexpected error while processing account {account_id}: {outcome}",
                    exc_info=outcome,
                )
                results[account_id] = AccountProcessingResult(account_id=account_id, error=outcome)
            else:
                results[account_id] = outcome

        return results

    async def process_account(self, account_id: int, final: bool = False) -> AccountProcessingResult:
        """
        한 계정의 미처리 거래를 순서대로 확정합니다.

        Args:
            account_id: 계정 ID
            final: True면 lenient 모드의 보류 거래까지 모두 확정

        Returns:
            AccountProcessingResult
        """
        if account_id in self._halted:
            logger.warning(f"Account {account_id} is halted, skipping (resume_account to retry)")
            return AccountProcessingResult(
                account_id=account_id, halted=True, error=self._halted[account_id]
            )

        lock = self._account_locks.setdefault(account_id, asyncio.Lock())
        async with lock:
            return await self._process_locked(account_id, final)

    async def _process_locked(self, account_id: int, final: bool) -> AccountProcessingResult:
        result = AccountProcessingResult(account_id=account_id)
        seen = self._seen_ids.setdefault(account_id, set())

        def on_invalid(transaction: Transaction, error: InvalidTransactionError) -> None:
            self._skip(result, seen, transaction, error)

        try:
            candidates = [
                transaction
                async for transaction in self._sequencer.sequence(account_id, seen, on_invalid)
            ]
            ready, held = self._split_ready(self._registry.get(account_id), candidates, final)

            for index, transaction in enumerate(ready):
                if self._stop_requested:
                    logger.info(f"Stop requested, leaving account {account_id} between transactions")
                    result.stopped = True
                    held = ready[index:] + held
                    break

                state = self._registry.get(account_id)
                if state is not None and state.is_finalized(transaction):
                    # 커서 위치의 거래 자체
                    seen.add(transaction.transaction_id)
                    logger.debug(f"{transaction.transaction_id} already finalized for account {account_id}")
                    continue

                if state is not None and state.precedes_cursor(transaction):
                    self._skip(
                        result,
                        seen,
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
                    continue

                evaluation, alerts = await self._finalize(account_id, transaction)
                result.processed += 1
                result.evaluations.append(evaluation)
                result.alerts.extend(alerts)

            result.pending = len(held)

        except (OrderingAmbiguousError, StoreUnavailableError) as e:
            self._halt(account_id, e, result)

        self._set_pending(account_id, result.pending)

        if result.processed or result.skipped:
            logger.info(
                f"Account {account_id}: processed={result.processed} skipped={result.skipped} "
                f"alerts={len(result.alerts)} pending={result.pending}"
            )
        return result

    def _split_ready(
        self, state: AccountState | None, candidates: list[Transaction], final: bool
    ) -> tuple[list[Transaction], list[Transaction]]:
        """
        확정할 거래와 보류할 거래를 나눕니다.

        lenient 모드에서는 watermark = (지금까지 본 최대 이벤트 시각 - grace_window)
        이하의 거래만 확정합니다. candidates는 정렬되어 있으므로 ready는 항상 앞부분입니다.
        """
        if final or not self._config.is_lenient or not candidates:
            return candidates, []

        latest = candidates[-1].timestamp
        if state is not None and state.previous_timestamp is not None:
            latest = max(latest, state.previous_timestamp)
        watermark = latest - self._config.grace_window

        ready = [t for t in candidates if t.timestamp <= watermark]
        return ready, candidates[len(ready):]

    async def _finalize(
        self, account_id: int, transaction: Transaction
    ) -> tuple[RuleEvaluation, list[Alert]]:
        """원자 단위를 실행합니다. 취소 요청은 단위가 끝난 뒤 전파됩니다."""
        task = asyncio.ensure_future(self._evaluate_and_emit(account_id, transaction))
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            logger.info(
                f"Cancellation requested during {transaction.transaction_id}, "
                "finishing the current transaction first"
            )
            await asyncio.wait({task})
            if not task.cancelled() and task.exception() is not None:
                logger.error(
                    f"Transaction {transaction.transaction_id} failed during cancellation: "
                    f"{task.exception()}"
                )
            raise

    async def _evaluate_and_emit(
        self, account_id: int, transaction: Transaction
    ) -> tuple[RuleEvaluation, list[Alert]]:
        """평가, Alert 기록, 상태 커밋, 확정 ID 기록을 한 단위로 수행합니다."""
        with PROCESSING_LATENCY.time():
            staged = self._registry.get_or_create(account_id).clone()
            evaluation = self._evaluator.evaluate(staged, transaction)

            alerts = []
            for reason in evaluation.reasons:
                alert = await self._emitter.emit(transaction, reason)
                if alert is not None:
                    alerts.append(alert)

            self._registry.commit(staged)
            self._seen_ids.setdefault(account_id, set()).add(transaction.transaction_id)
            self._processed_count += 1
            self._alert_count += len(alerts)

        TRANSACTIONS_EVALUATED.labels(result="flagged" if evaluation.is_flagged else "clean").inc()
        logger.debug(
            f"Finalized {transaction.transaction_id} (rank={evaluation.amount_rank:.3f}, "
            f"reasons={[r.value for r in evaluation.reasons]})"
        )
        return evaluation, alerts

    def _skip(
        self,
        result: AccountProcessingResult,
        seen: set[str],
        transaction: Transaction,
        error: AnomalyEngineException,
    ) -> None:
        seen.add(transaction.transaction_id)
        self._skipped_count += 1
        result.skipped += 1
        result.diagnostics.append(SkippedTransaction(transaction.transaction_id, error))
        TRANSACTIONS_EVALUATED.labels(result="skipped").inc()
        logger.warning(f"Skipping transaction {transaction.transaction_id!r}: {error}")

    def _halt(self, account_id: int, error: BaseException, result: AccountProcessingResult) -> None:
        self._halted[account_id] = error
        result.halted = True
        result.error = error
        WORKERS_HALTED.labels(error=type(error).__name__).inc()
        logger.critical(f"Halting account {account_id}: {error}")

    def _set_pending(self, account_id: int, pending: int) -> None:
        self._pending[account_id] = pending
        PENDING_TRANSACTIONS.set(sum(self._pending.values()))

    @staticmethod
    def _count_retry(attempt: int, error: StoreUnavailableError) -> None:
        STORE_RETRIES.inc()

    # ========== Control ==========

    def request_stop(self) -> None:
        """진행 중인 워커를 다음 거래 경계에서 멈추도록 요청합니다. 다음 run()에서 해제됩니다."""
        logger.info("Stop requested")
        self._stop_requested = True

    def resume_account(self, account_id: int) -> bool:
        """
        중단된 계정을 재개 가능 상태로 되돌립니다.

        Returns:
            중단되어 있었으면 True
        """
        error = self._halted.pop(account_id, None)
        if error is None:
            return False
        logger.info(f"Resuming account {account_id} (was halted by: {error})")
        return True

    def halted_accounts(self) -> dict[int, BaseException]:
        return dict(self._halted)

    # ========== Ingestion & Reporting ==========

    async def ingest(self, transaction: Transaction) -> None:
        """
        새 거래를 저장소에 추가합니다.

        Args:
            transaction: 추가할 거래

        Raises:
            InvalidTransactionError: 거래 레코드가 유효하지 않은 경우
            OutOfOrderTransactionError: 계정의 확정 순서보다 앞서는 경우
            DuplicateTransactionIdError: transaction_id가 이미 존재하는 경우
            StoreUnavailableError: 재시도 후에도 저장소에 쓸 수 없는 경우
        """
        transaction.validate()

        state = self._registry.get(transaction.account_id)
        if state is not None and state.precedes_cursor(transaction):
            raise OutOfOrderTransactionError(
                account_id=transaction.account_id,
                transaction_id=transaction.transaction_id,
                message=(
                    f"Rejected late transaction {transaction.transaction_id} at "
                    f"{transaction.timestamp.isoformat()} for account {transaction.account_id}"
                ),
            )

        await call_with_retry(
            lambda: self._transaction_store.append(transaction),
            self._config.store_retry,
            f"append transaction {transaction.transaction_id}",
            self._count_retry,
        )
        logger.debug(f"Ingested {transaction}")

    async def report(self, account_id: int) -> AccountReport:
        return await self._reporting.report(account_id)

    async def report_all(self, account_ids: Iterable[int] | None = None) -> list[AccountReport]:
        return await self._reporting.report_all(account_ids)

    def get_status(self) -> dict:
        """
        엔진 상태 조회

        Returns:
            상태 정보 딕셔너리:
                - accounts: 상태를 가진 계정 수
                - processed: 확정된 거래 수
                - skipped: 건너뛴 거래 수
                - alerts: 기록된 Alert 수
                - pending: 보류 중인 거래 수
                - halted_accounts: 중단된 계정 ID 목록
                - stop_requested: 중단 요청 여부
                - published / publish_failures: 발행 통계
        """
        return {
            "accounts": len(self._registry),
            "processed": self._processed_count,
            "skipped": self._skipped_count,
            "alerts": self._alert_count,
            "pending": sum(self._pending.values()),
            "halted_accounts": sorted(self._halted),
            "stop_requested": self._stop_requested,
            **self._emitter.get_status(),
        }
