"""
탐지 엔진 설정 팩토리

EngineConfig 생성 헬퍼와 환경 변수(ANOMALY_*) 기반 설정 로더를 제공합니다.

환경 변수:
    ANOMALY_RAPID_SUCCESSION_SECONDS: 연속 거래 간격 임계값 (초, 기본 300)
    ANOMALY_MULTIPLIER: 금액 이상 배수 (기본 3)
    ANOMALY_ORDERING_MODE: strict | lenient (기본 strict)
    ANOMALY_GRACE_WINDOW_SECONDS: lenient 모드 grace window (초, 기본 0)
    ANOMALY_RANK_WINDOW: 순위 계산용 최근 금액 수 (비우면 무제한)
    ANOMALY_MAX_CONCURRENT_ACCOUNTS: 동시 계정 워커 수 (기본 64)
    ANOMALY_STORE_RETRY_ATTEMPTS: 저장소 재시도 최대 시도 횟수 (기본 5)
    ANOMALY_STORE_RETRY_BASE_SECONDS: 첫 재시도 대기 (초, 기본 0.1)
    ANOMALY_STORE_RETRY_MAX_SECONDS: 재시도 대기 상한 (초, 기본 5)
"""

import logging
import os
from collections.abc import Mapping
from datetime import timedelta
from decimal import Decimal

from anomaly_engine.domain.exceptions import InvalidConfigurationError
from anomaly_engine.domain.models.engine_config import EngineConfig, OrderingMode, RetryPolicy

logger = logging.getLogger(__name__)

# 탐지 규칙 기본값
DEFAULT_RAPID_SUCCESSION_SECONDS = 300
DEFAULT_ANOMALY_MULTIPLIER = Decimal("3")

DEFAULT_MAX_CONCURRENT_ACCOUNTS = 64

# 재시도 설정
DEFAULT_STORE_RETRY_ATTEMPTS = 5
DEFAULT_STORE_RETRY_BASE_SECONDS = 0.1
DEFAULT_STORE_RETRY_MAX_SECONDS = 5.0

ENV_PREFIX = "ANOMALY_"


def create_engine_config(
    rapid_succession_seconds: float = DEFAULT_RAPID_SUCCESSION_SECONDS,
    anomaly_multiplier: Decimal | int | str = DEFAULT_ANOMALY_MULTIPLIER,
    ordering_mode: OrderingMode | str = OrderingMode.STRICT,
    grace_window_seconds: float = 0,
    rank_window: int | None = None,
    max_concurrent_accounts: int = DEFAULT_MAX_CONCURRENT_ACCOUNTS,
    store_retry_attempts: int = DEFAULT_STORE_RETRY_ATTEMPTS,
    store_retry_base_seconds: float = DEFAULT_STORE_RETRY_BASE_SECONDS,
    store_retry_max_seconds: float = DEFAULT_STORE_RETRY_MAX_SECONDS,
) -> EngineConfig:
    """
    초 단위 값으로 EngineConfig를 생성합니다.

    Args:
        rapid_succession_seconds: 연속 거래 간격 임계값 (초)
        anomaly_multiplier: 금액 이상 배수
        ordering_mode: 순서 정책 (strict | lenient)
        grace_window_seconds: lenient 모드 grace window (초)
        rank_window: 순위 계산용 최근 금액 수 (None이면 무제한)
        max_concurrent_accounts: 동시 계정 워커 수
        store_retry_attempts: 저장소 재시도 최대 시도 횟수
        store_retry_base_seconds: 첫 재시도 대기 (초)
        store_retry_max_seconds: 재시도 대기 상한 (초)

    Returns:
        검증된 EngineConfig

    Raises:
        InvalidConfigurationError: 설정 검증 실패 시

    Examples:
        >>> config = create_engine_config(ordering_mode="lenient", grace_window_seconds=60)
        >>> config.grace_window
        datetime.timedelta(seconds=60)
    """
    return EngineConfig(
        rapid_succession_threshold=timedelta(seconds=rapid_succession_seconds),
        anomaly_multiplier=anomaly_multiplier,
        ordering_mode=ordering_mode,
        grace_window=timedelta(seconds=grace_window_seconds),
        rank_window=rank_window,
        max_concurrent_accounts=max_concurrent_accounts,
        store_retry=RetryPolicy(
            max_attempts=store_retry_attempts,
            base_delay_seconds=store_retry_base_seconds,
            max_delay_seconds=store_retry_max_seconds,
        ),
    )


def _read(environ: Mapping[str, str], name: str, convert, default):
    raw = environ.get(ENV_PREFIX + name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return convert(raw.strip())
    except (ValueError, ArithmeticError) as e:
        raise InvalidConfigurationError(f"Invalid value for {ENV_PREFIX}{name}: {raw!r}", cause=e)


def engine_config_from_env(environ: Mapping[str, str] | None = None) -> EngineConfig:
    """
    ANOMALY_* 환경 변수로부터 EngineConfig를 생성합니다.

    Args:
        environ: 환경 변수 매핑 (기본값: os.environ)

    Returns:
        검증된 EngineConfig

    Raises:
        InvalidConfigurationError: 값 변환 또는 검증 실패 시
    """
    environ = os.environ if environ is None else environ

    config = create_engine_config(
        rapid_succession_seconds=_read(
            environ, "RAPID_SUCCESSION_SECONDS", float, DEFAULT_RAPID_SUCCESSION_SECONDS
        ),
        anomaly_multiplier=_read(environ, "MULTIPLIER", Decimal, DEFAULT_ANOMALY_MULTIPLIER),
        ordering_mode=_read(environ, "ORDERING_MODE", str, OrderingMode.STRICT),
        grace_window_seconds=_read(environ, "GRACE_WINDOW_SECONDS", float, 0),
        rank_window=_read(environ, "RANK_WINDOW", int, None),
        max_concurrent_accounts=_read(
            environ, "MAX_CONCURRENT_ACCOUNTS", int, DEFAULT_MAX_CONCURRENT_ACCOUNTS
        ),
        store_retry_attempts=_read(environ, "STORE_RETRY_ATTEMPTS", int, DEFAULT_STORE_RETRY_ATTEMPTS),
        store_retry_base_seconds=_read(
            environ, "STORE_RETRY_BASE_SECONDS", float, DEFAULT_STORE_RETRY_BASE_SECONDS
        ),
        store_retry_max_seconds=_read(
            environ, "STORE_RETRY_MAX_SECONDS", float, DEFAULT_STORE_RETRY_MAX_SECONDS
        ),
    )
    logger.info(f"Loaded {config}")
    return config
