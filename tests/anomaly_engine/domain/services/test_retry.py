"""
저장소 경계 재시도 테스트
"""

from unittest.mock import AsyncMock, patch

import pytest

from anomaly_engine.domain.exceptions import DuplicateTransactionIdError, StoreUnavailableError
from anomaly_engine.domain.models.engine_config import RetryPolicy
from anomaly_engine.domain.services.retry import call_with_retry


class TestCallWithRetry:
    """call_with_retry() 테스트"""

    @pytest.mark.asyncio
    async def test_성공할_때까지_지수_백오프로_재시도(self) -> None:
        """
        GIVEN: 두 번 실패 후 성공하는 작업
        WHEN: call_with_retry()로 실행하면
        THEN: 결과를 반환하고, 재시도 사이에 정책의 지연만큼 대기해야 한다
        """
        # GIVEN
        operation = AsyncMock(side_effect=[StoreUnavailableError("down"), StoreUnavailableError("down"), "ok"])
        policy = RetryPolicy(max_attempts=5, base_delay_seconds=0.1, max_delay_seconds=1.0)

        # WHEN
        with patch("anomaly_engine.domain.services.retry.asyncio.sleep", new=AsyncMock()) as mock_sleep:
            result = await call_with_retry(operation, policy, "read store")

        # THEN
        assert result == "ok"
        assert operation.await_count == 3
        assert [c.args[0] for c in mock_sleep.await_args_list] == [0.1, 0.2]

    @pytest.mark.asyncio
    async def test_재시도_한도_초과_시_원인과_함께_실패(self) -> None:
        # GIVEN
        last = StoreUnavailableError("still down")
        operation = AsyncMock(side_effect=[StoreUnavailableError("down"), last])
        policy = RetryPolicy(max_attempts=2, base_delay_seconds=0, max_delay_seconds=0)

        # WHEN
        with pytest.raises(StoreUnavailableError) as exc_info:
            await call_with_retry(operation, policy, "append alert")

        # THEN
        assert "Failed to append alert after 2 attempts" in str(exc_info.value)
        assert exc_info.value.__cause__ is last

    @pytest.mark.asyncio
    async def test_다른_예외는_재시도하지_않음(self) -> None:
        """
        GIVEN: DuplicateTransactionIdError를 발생시키는 작업
        WHEN: call_with_retry()로 실행하면
        THEN: 재시도 없이 즉시 전파되어야 한다
        """
        operation = AsyncMock(side_effect=DuplicateTransactionIdError("T-1"))
        policy = RetryPolicy(max_attempts=5, base_delay_seconds=0, max_delay_seconds=0)

        with pytest.raises(DuplicateTransactionIdError):
            await call_with_retry(operation, policy, "append transaction")

        assert operation.await_count == 1
