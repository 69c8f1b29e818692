"""
탐지 엔진 설정 모델

탐지 규칙 임계값, 순서 정책, 저장소 재시도 정책을 담는 불변 도메인 모델입니다.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from enum import Enum

from anomaly_engine.domain.exceptions import InvalidConfigurationError


class OrderingMode(Enum):
    """
    늦게 도착한(out-of-order) 거래 처리 정책

    Attributes:
        STRICT: 가용한 거래를 즉시 확정하고, 확정 순서보다 이른 거래는 거부
        LENIENT: grace window 동안 거래를 버퍼링한 뒤 순서를 확정
    """

    STRICT = "strict"
    LENIENT = "lenient"


@dataclass(frozen=True)
class RetryPolicy:
    """
    저장소 I/O 재시도 정책 (제한된 지수 백오프)

    Attributes:
        max_attempts: 최초 시도를 포함한 최대 시도 횟수
        base_delay_seconds: 첫 재시도 전 대기 시간 (초)
        max_delay_seconds: 재시도 대기 시간 상한 (초)
    """

    max_attempts: int = 5
    base_delay_seconds: float = 0.1
    max_delay_seconds: float = 5.0

    def __post_init__(self) -> None:
        errors = []
        if self.max_attempts < 1:
            errors.append("max_attempts must be at least 1")
        if self.base_delay_seconds < 0:
            errors.append("base_delay_seconds cannot be negative")
        if self.max_delay_seconds < self.base_delay_seconds:
            errors.append("max_delay_seconds must be >= base_delay_seconds")
        if errors:
            raise InvalidConfigurationError(f"RetryPolicy validation failed: {'; '.join(errors)}")

    def delay_for(self, attempt: int) -> float:
        """
        지수 백오프 지연 시간을 계산합니다.

        Args:
            attempt: 0부터 시작하는 재시도 번호

        Returns:
            지연 시간 (초). max_delay_seconds를 초과하지 않음

        Examples:
            - 0번째 재시도: base
            - 1번째 재시도: base * 2
            - 2번째 재시도: base * 4
        """
        return float(min(self.base_delay_seconds * 2**attempt, self.max_delay_seconds))


@dataclass(frozen=True)
class EngineConfig:
    """
    탐지 엔진 설정을 담는 불변 객체입니다.

    Attributes:
        rapid_succession_threshold: 연속 거래 간격 임계값. 이 값 미만이면 RapidSuccession.
        anomaly_multiplier: 금액 이상 배수. amount > multiplier × 이전 평균이면 HighTransactionAmount.
        ordering_mode: 늦게 도착한 거래 처리 정책 (strict | lenient)
        grace_window: lenient 모드에서 순서 확정 전 대기하는 이벤트 시간 폭
        rank_window: 금액 순위 계산에 사용하는 최근 금액 개수 상한. None이면 무제한.
        max_concurrent_accounts: 동시에 실행되는 계정 워커 수 상한
        store_retry: 저장소 I/O 재시도 정책
    """

    rapid_succession_threshold: timedelta = timedelta(minutes=5)
    anomaly_multiplier: Decimal = Decimal("3")
    ordering_mode: OrderingMode = OrderingMode.STRICT
    grace_window: timedelta = timedelta(0)
    rank_window: int | None = None
    max_concurrent_accounts: int = 64
    store_retry: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self) -> None:
        """객체 생성 후 정규화 및 검증을 수행합니다."""
        # anomaly_multiplier 정규화: int/str/float도 Decimal로 변환
        if not isinstance(self.anomaly_multiplier, Decimal):
            try:
                normalized = Decimal(str(self.anomaly_multiplier))
            except InvalidOperation as e:
                raise InvalidConfigurationError(
                    f"anomaly_multiplier must be numeric, got {self.anomaly_multiplier!r}", cause=e
                )
            object.__setattr__(self, "anomaly_multiplier", normalized)

        if isinstance(self.ordering_mode, str):
            try:
                object.__setattr__(self, "ordering_mode", OrderingMode(self.ordering_mode.lower()))
            except ValueError as e:
                raise InvalidConfigurationError(
                    f"ordering_mode must be 'strict' or 'lenient', got {self.ordering_mode!r}",
                    cause=e,
                )

        self.validate()

    def validate(self) -> None:
        """
        설정 값의 유효성을 검사합니다.

        Raises:
            InvalidConfigurationError: 설정이 유효하지 않을 경우 발생합니다.
        """
        errors = []

        if self.rapid_succession_threshold <= timedelta(0):
            errors.append("rapid_succession_threshold must be positive")

        if not self.anomaly_multiplier.is_finite() or self.anomaly_multiplier <= 0:
            errors.append(f"anomaly_multiplier must be positive, got {self.anomaly_multiplier}")

        if self.grace_window < timedelta(0):
            errors.append("grace_window cannot be negative")

        if self.ordering_mode == OrderingMode.STRICT and self.grace_window > timedelta(0):
            errors.append("grace_window requires ordering_mode=lenient")

        if self.rank_window is not None and self.rank_window < 1:
            errors.append("rank_window must be at least 1 (or None for unbounded)")

        if self.max_concurrent_accounts < 1:
            errors.append("max_concurrent_accounts must be at least 1")

        if errors:
            raise InvalidConfigurationError(
                f"EngineConfig validation failed: {'; '.join(errors)}"
            )

    @property
    def is_lenient(self) -> bool:
        """lenient(버퍼링) 모드 여부"""
        return self.ordering_mode == OrderingMode.LENIENT

    def __str__(self) -> str:
        return (
            f"EngineConfig(rapid_succession_threshold={self.rapid_succession_threshold}, "
            f"anomaly_multiplier={self.anomaly_multiplier}, "
            f"ordering_mode={self.ordering_mode.value}, grace_window={self.grace_window})"
        )
