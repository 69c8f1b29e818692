"""
저장소 경계 재시도

StoreUnavailableError만 제한된 지수 백오프로 재시도합니다.
규칙 평가 로직 내부에서는 사용하지 않습니다.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from anomaly_engine.domain.exceptions import StoreUnavailableError
from anomaly_engine.domain.models.engine_config import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    description: str,
    on_retry: Callable[[int, StoreUnavailableError], None] | None = None,
) -> T:
    """
    저장소 작업을 재시도 정책에 따라 실행합니다.

    Args:
        operation: 매 시도마다 새 awaitable을 만드는 호출 가능 객체
        policy: 재시도 정책
        description: 로그/예외 메시지용 작업 설명 (예: "append alert for T-1")
        on_retry: 재시도 직전에 (시도 번호, 원인)으로 호출되는 콜백 (메트릭 기록용)

    Returns:
        operation의 결과

    Raises:
        StoreUnavailableError: 모든 시도가 실패한 경우 (마지막 원인을 체이닝)
        그 외 예외: 재시도하지 않고 즉시 전파
    """
    last_error: StoreUnavailableError | None = None

    for attempt in range(policy.max_attempts):
        try:
            return await operation()
        except StoreUnavailableError as e:
            last_error = e
            if attempt + 1 >= policy.max_attempts:
                break
            delay = policy.delay_for(attempt)
            logger.warning(
                f"Store unavailable during {description} "
                f"(attempt {attempt + 1}/{policy.max_attempts}), retrying in {delay:.2f}s: {e}"
            )
            if on_retry is not None:
                on_retry(attempt + 1, e)
            await asyncio.sleep(delay)

    raise StoreUnavailableError(
        f"Failed to {description} after {policy.max_attempts} attempts", cause=last_error
    )
