"""
탐지 오케스트레이션 서비스

DetectionEngine을 주기적으로 실행하여 새로 도착한 거래를 계속 평가하는
장기 실행 서비스입니다.
"""

import asyncio
import logging

from anomaly_engine.application.services.detection_engine import DetectionEngine

logger = logging.getLogger(__name__)


class DetectionService:
    """
    탐지 오케스트레이션 서비스

    Features:
        - 백그라운드 폴링 루프 (poll_interval_seconds 간격으로 engine.run())
        - Graceful shutdown (현재 거래 경계에서 중단 후 발행자 flush)
        - 연속 실패 시 서비스 중단

    Attributes:
        _engine: 탐지 엔진
        _poll_interval: 폴링 간격 (초)
        _max_consecutive_failures: 연속 실패 허용 횟수
        _stop_timeout: 중단 대기 시간 (초)
        _running: 서비스 실행 상태
        _lock: 동시성 제어용 락
        _cycle_count: 완료된 폴링 사이클 수
        _consecutive_failures: 연속 실패 횟수
        _background_task: 백그라운드 태스크 참조
    """

    def __init__(
        self,
        engine: DetectionEngine,
        poll_interval_seconds: float = 1.0,
        max_consecutive_failures: int = 10,
        stop_timeout_seconds: float = 5.0,
    ):
        """
        DetectionService 초기화

        Args:
            engine: 탐지 엔진
            poll_interval_seconds: 폴링 간격 (초, 기본값: 1.0)
            max_consecutive_failures: 연속 실패 허용 횟수 (기본값: 10)
            stop_timeout_seconds: 중단 시 백그라운드 태스크 대기 시간 (초, 기본값: 5.0)
        """
        if poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be positive")

        self._engine = engine
        self._poll_interval = poll_interval_seconds
        self._max_consecutive_failures = max_consecutive_failures
        self._stop_timeout = stop_timeout_seconds

        self._running = False
        self._lock = asyncio.Lock()
        self._cycle_count = 0
        self._consecutive_failures = 0
        self._background_task: asyncio.Task | None = None

    async def start(self) -> None:
        """
        서비스 시작

        Raises:
            RuntimeError: 이미 실행 중인 경우
        """
        async with self._lock:
            if self._running:
                raise RuntimeError("Service is already running")

            logger.info("Starting DetectionService...")
            self._running = True
            self._background_task = asyncio.create_task(self._poll_loop())
            logger.info("DetectionService started successfully")

    async def stop(self, final: bool = False) -> None:
        """
        서비스 중단 (Graceful Shutdown)

        1. 엔진에 중단 요청 (현재 거래 처리 후 멈춤)
        2. 백그라운드 태스크 종료 대기
        3. final=True면 보류 중인 거래까지 마지막으로 확정
        4. Publisher flush

        멱등성을 보장하여 여러 번 호출해도 안전합니다.

        Args:
            final: True면 종료 전에 lenient 모드 보류 거래를 모두 확정
        """
        async with self._lock:
            if not self._running:
                logger.debug("Service is not running, skipping stop")
                return

            logger.info("Stopping DetectionService...")
            self._running = False
            self._engine.request_stop()

        try:
            # 1. 백그라운드 태스크 종료 대기 (최대 stop_timeout_seconds)
            # 시간 초과로 취소해도 진행 중인 거래는 끝까지 처리된 뒤 태스크가 종료된다
            if self._background_task:
                try:
                    await asyncio.wait_for(asyncio.shield(self._background_task), timeout=self._stop_timeout)
                except asyncio.TimeoutError:
                    logger.warning("Background task did not finish within timeout, cancelling")
                    self._background_task.cancel()
                    try:
                        await self._background_task
                    except asyncio.CancelledError:
                        pass
                except Exception as e:
                    logger.error(f"Background task ended with error: {e}")

            # 2. 스트림 종료 처리
            if final:
                results = await self._engine.run(final=True)
                logger.info(f"Final pass processed {sum(r.processed for r in results.values())} transactions")

            # 3. Publisher flush
            publisher = self._engine.publisher
            if publisher is not None:
                try:
                    remaining = await publisher.flush(timeout=5.0)
                    logger.info(f"Publisher flushed ({remaining} messages remaining)")
                except Exception as e:
                    logger.error(f"Failed to flush publisher: {e}")

        finally:
            logger.info("DetectionService stopped")

    async def _poll_loop(self) -> None:
        """
        폴링 메인 루프

        Raises:
            Exception: 연속 실패가 허용 횟수에 도달한 경우 마지막 예외
        """
        logger.info("Starting detection loop...")

        try:
            while self._running:
                try:
                    results = await self._engine.run()
                    self._consecutive_failures = 0
                    self._cycle_count += 1

                    processed = sum(r.processed for r in results.values())
                    if processed:
                        logger.info(f"Cycle {self._cycle_count}: processed {processed} transactions")

                except Exception as e:
                    self._consecutive_failures += 1
                    logger.error(
                        f"Detection cycle failed (consecutive failures: {self._consecutive_failures}): {e}"
                    )
                    if self._consecutive_failures >= self._max_consecutive_failures:
                        logger.critical(
                            f"Consecutive detection failures reached {self._max_consecutive_failures}. "
                            "Shutting down service."
                        )
                        self._running = False
                        raise

                if self._running:
                    await asyncio.sleep(self._poll_interval)
        finally:
            logger.info("Detection loop ended")

    def get_status(self) -> dict:
        """
        서비스 상태 조회

        Returns:
            상태 정보 딕셔너리:
                - running: 실행 중 여부
                - cycles: 완료된 폴링 사이클 수
                - consecutive_failures: 연속 실패 횟수
                - engine: 엔진 상태
        """
        return {
            "running": self._running,
            "cycles": self._cycle_count,
            "consecutive_failures": self._consecutive_failures,
            "engine": self._engine.get_status(),
        }
