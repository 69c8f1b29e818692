"""
DetectionService 테스트

폴링 루프 수명주기, graceful shutdown, 연속 실패 처리를 검증합니다.
"""

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from anomaly_engine.application.services.detection_engine import DetectionEngine
from anomaly_engine.application.services.detection_service import DetectionService
from anomaly_engine.domain.models.alert import Alert, AlertReason
from anomaly_engine.domain.models.engine_config import EngineConfig
from anomaly_engine.domain.models.transaction import Transaction
from anomaly_engine.domain.ports.alert_publisher import AlertPublisher
from anomaly_engine.infrastructure.persistence.in_memory import (
    InMemoryAlertStore,
    InMemoryTransactionStore,
)

BASE = datetime(2024, 1, 1, 10, 0, 0, tzinfo=UTC)


class SlowAlertStore(InMemoryAlertStore):
    """append가 느린 알림 저장소. 첫 append가 시작되면 append_started가 설정된다"""

    def __init__(self, delay_seconds: float) -> None:
        super().__init__()
        self.delay_seconds = delay_seconds
        self.append_started = asyncio.Event()

    async def append(self, alert: Alert) -> None:
        self.append_started.set()
        await asyncio.sleep(self.delay_seconds)
        await super().append(alert)


def _txn(transaction_id: str, minutes: int, amount: str = "10.00") -> Transaction:
    return Transaction(
        transaction_id=transaction_id,
        account_id=1,
        amount=Decimal(amount),
        timestamp=BASE + timedelta(minutes=minutes),
        merchant="Shop",
        location="Seoul",
        transaction_type="Debit",
    )


@pytest.fixture
def transaction_store() -> InMemoryTransactionStore:
    return InMemoryTransactionStore([_txn("T-0", 0, "100.00"), _txn("T-1", 3, "500.00")])


@pytest.fixture
def alert_store() -> InMemoryAlertStore:
    return InMemoryAlertStore()


@pytest.fixture
def failing_engine() -> MagicMock:
    engine = MagicMock(spec=DetectionEngine)
    engine.run = AsyncMock(side_effect=RuntimeError("boom"))
    engine.publisher = None
    engine.get_status.return_value = {}
    return engine


class TestDetectionServiceInit:
    """DetectionService 초기화 테스트"""

    def test_폴링_간격은_양수(self, failing_engine: MagicMock) -> None:
        with pytest.raises(ValueError, match="poll_interval_seconds"):
            DetectionService(failing_engine, poll_interval_seconds=0)


class TestDetectionServiceLifecycle:
    """start / stop 수명주기 테스트"""

    @pytest.mark.asyncio
    async def test_시작하면_거래를_처리하고_중단(
        self, transaction_store: InMemoryTransactionStore, alert_store: InMemoryAlertStore
    ) -> None:
        """
        GIVEN: 거래 2건이 있는 저장소
        WHEN: 서비스를 시작하고 잠시 후 중단하면
        THEN: 거래가 처리되어 Alert가 기록되고 서비스는 멈춰야 한다
        """
        # GIVEN
        engine = DetectionEngine(transaction_store, alert_store)
        service = DetectionService(engine, poll_interval_seconds=0.01)

        # WHEN
        await service.start()
        await asyncio.sleep(0.05)
        await service.stop()

        # THEN
        status = service.get_status()
        assert status["running"] is False
        assert status["cycles"] >= 1
        assert status["engine"]["processed"] == 2
        assert len(alert_store) == 2

    @pytest.mark.asyncio
    async def test_이미_실행_중이면_RuntimeError(
        self, transaction_store: InMemoryTransactionStore, alert_store: InMemoryAlertStore
    ) -> None:
        service = DetectionService(DetectionEngine(transaction_store, alert_store), poll_interval_seconds=0.01)
        await service.start()

        try:
            with pytest.raises(RuntimeError, match="already running"):
                await service.start()
        finally:
            await service.stop()

    @pytest.mark.asyncio
    async def test_실행_중이_아니면_stop은_무시(self, failing_engine: MagicMock) -> None:
        service = DetectionService(failing_engine)

        await service.stop()

        failing_engine.request_stop.assert_not_called()

    @pytest.mark.asyncio
    async def test_final_중단은_보류_거래를_확정(
        self, transaction_store: InMemoryTransactionStore, alert_store: InMemoryAlertStore
    ) -> None:
        """
        GIVEN: grace window가 긴 lenient 엔진
        WHEN: 서비스를 final=True로 중단하면
        THEN: 보류 중이던 거래가 모두 확정되어야 한다
        """
        # GIVEN
        config = EngineConfig(ordering_mode="lenient", grace_window=timedelta(hours=1))
        engine = DetectionEngine(transaction_store, alert_store, config=config)
        service = DetectionService(engine, poll_interval_seconds=0.01)

        await service.start()
        await asyncio.sleep(0.05)
        assert engine.get_status()["pending"] == 2

        # WHEN
        await service.stop(final=True)

        # THEN
        assert engine.get_status()["processed"] == 2
        assert engine.get_status()["pending"] == 0

    @pytest.mark.asyncio
    async def test_중단시_발행자_flush(
        self, transaction_store: InMemoryTransactionStore, alert_store: InMemoryAlertStore
    ) -> None:
        publisher = AsyncMock(spec=AlertPublisher)
        publisher.flush.return_value = 0
        engine = DetectionEngine(transaction_store, alert_store, publisher=publisher)
        service = DetectionService(engine, poll_interval_seconds=0.01)

        await service.start()
        await asyncio.sleep(0.05)
        await service.stop()

        publisher.flush.assert_awaited_once_with(timeout=5.0)
        assert publisher.publish.await_count == 2


class TestDetectionServiceFailures:
    """연속 실패 처리 테스트"""

    @pytest.mark.asyncio
    async def test_연속_실패가_한도에_도달하면_루프_종료(self, failing_engine: MagicMock) -> None:
        """
        GIVEN: 항상 실패하는 엔진과 연속 실패 한도 2
        WHEN: 서비스를 시작하면
        THEN: 두 번 실패 후 루프가 마지막 예외와 함께 종료되어야 한다
        """
        # GIVEN
        service = DetectionService(failing_engine, poll_interval_seconds=0.001, max_consecutive_failures=2)

        # WHEN
        await service.start()
        with pytest.raises(RuntimeError, match="boom"):
            await asyncio.wait_for(service._background_task, timeout=1.0)

        # THEN
        status = service.get_status()
        assert status["running"] is False
        assert status["consecutive_failures"] == 2
        assert status["cycles"] == 0
        assert failing_engine.run.await_count == 2


class TestDetectionServiceStopTimeout:
    """중단 대기 시간 초과 테스트"""

    @pytest.mark.asyncio
    async def test_대기_시간_초과로_취소해도_진행_중인_거래는_완료(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        """
        GIVEN: Alert 기록이 중단 대기 시간보다 오래 걸리는 엔진
        WHEN: 고액 거래의 Alert 기록 중에 서비스를 중단하면
        THEN: 백그라운드 태스크는 취소되지만 진행 중이던 거래는 Alert와 함께 확정되어야 한다
        """
        # GIVEN
        store = InMemoryTransactionStore([_txn("T-0", 0, "100.00"), _txn("T-1", 60, "500.00")])
        alert_store = SlowAlertStore(delay_seconds=0.2)
        engine = DetectionEngine(store, alert_store)
        service = DetectionService(engine, poll_interval_seconds=0.01, stop_timeout_seconds=0.01)

        await service.start()
        await alert_store.append_started.wait()

        # WHEN
        with caplog.at_level(logging.WARNING):
            await service.stop()

        # THEN
        assert "did not finish within timeout" in caplog.text
        assert service._background_task.cancelled()

        state = engine.account_state(1)
        assert state.count == 2
        assert [(a.transaction_id, a.reason) for a in alert_store.all()] == [
            ("T-1", AlertReason.HIGH_TRANSACTION_AMOUNT)
        ]

        rerun = await engine.run()
        assert rerun[1].processed == 0
        assert len(alert_store) == 1
