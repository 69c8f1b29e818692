"""
거래 레코드 모델

Transaction Store에 한 번 추가된 후 절대 변경되지 않는 불변 도메인 모델입니다.
금액(DECIMAL(10, 2)), 타임스탬프(초 단위, UTC), 위치, 거래 유형 규칙을 검증합니다.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from anomaly_engine.domain.exceptions import InvalidTransactionError

# DECIMAL(10, 2): 소수점 이하 2자리, 전체 10자리
AMOUNT_QUANTUM = Decimal("0.01")
MAX_AMOUNT = Decimal("99999999.99")

# VARCHAR(10)
MAX_TRANSACTION_TYPE_LENGTH = 10


@dataclass(frozen=True)
class Transaction:
    """
    금융 거래 한 건을 나타내는 불변 객체입니다.

    Attributes:
        transaction_id: 전역적으로 고유한 거래 ID
        account_id: 계정 ID
        amount: 거래 금액 (고정 소수점, 소수점 이하 2자리)
        timestamp: 거래 발생 시각 (UTC, 초 단위 정밀도)
        merchant: 가맹점 이름
        location: 거래 위치 (대소문자를 구분하여 비교)
        transaction_type: 짧은 거래 유형 코드 (최대 10자)
        is_fraud: 실제 사기 여부 라벨. 평가(리포팅) 전용이며 탐지 규칙에는 사용하지 않습니다.

    Examples:
        >>> from datetime import datetime, UTC
        >>> from decimal import Decimal
        >>> txn = Transaction(
        ...     transaction_id="T-1",
        ...     account_id=1,
        ...     amount=Decimal("50.00"),
        ...     timestamp=datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC),
        ...     merchant="Coffee Shop",
        ...     location="NY",
        ...     transaction_type="Debit",
        ... )
        >>> txn.validate()  # 검증 성공
        >>> txn.sort_key[1]
        'T-1'
    """

    transaction_id: str
    account_id: int
    amount: Decimal
    timestamp: datetime
    merchant: str
    location: str
    transaction_type: str
    is_fraud: bool = False

    @property
    def sort_key(self) -> tuple[datetime, str]:
        """
        계정 내 결정적 전체 순서를 위한 정렬 키

        Returns:
            (timestamp, transaction_id) 튜플. 동일 시각은 거래 ID 사전순으로 정렬됩니다.
        """
        return (self.timestamp, self.transaction_id)

    def validate(self) -> None:
        """
        비즈니스 규칙 검증

        다음 규칙을 검증합니다:
        - transaction_id가 비어있지 않아야 함
        - account_id가 정수여야 함
        - amount가 Decimal이고 0 이상, 99999999.99 이하, 소수점 이하 2자리 이내여야 함
        - timestamp가 UTC timezone-aware이고 초 단위 정밀도여야 함
        - location이 비어있지 않아야 함
        - transaction_type이 1~10자여야 함

        Raises:
            InvalidTransactionError: 검증 실패 시 (모든 위반 사항을 한 번에 보고)
        """
        errors = []

        if not isinstance(self.transaction_id, str) or not self.transaction_id.strip():
            errors.append("transaction_id cannot be empty")

        if not isinstance(self.account_id, int) or isinstance(self.account_id, bool):
            errors.append(f"account_id must be an integer, got {self.account_id!r}")

        errors.extend(self._amount_errors())
        errors.extend(self._timestamp_errors())

        if not isinstance(self.location, str) or not self.location.strip():
            errors.append("location cannot be empty")

        if not isinstance(self.merchant, str):
            errors.append(f"merchant must be a string, got {self.merchant!r}")

        if (
            not isinstance(self.transaction_type, str)
            or not self.transaction_type.strip()
            or len(self.transaction_type) > MAX_TRANSACTION_TYPE_LENGTH
        ):
            errors.append(
                f"transaction_type must be 1-{MAX_TRANSACTION_TYPE_LENGTH} characters, "
                f"got {self.transaction_type!r}"
            )

        if errors:
            raise InvalidTransactionError(
                f"Transaction validation failed for {self.transaction_id!r}: "
                f"{'; '.join(errors)}"
            )

    def _amount_errors(self) -> list[str]:
        """금액 규칙 위반 목록을 반환합니다."""
        if not isinstance(self.amount, Decimal):
            return [f"amount must be a Decimal, got {type(self.amount).__name__}"]
        if not self.amount.is_finite():
            return [f"amount must be finite, got {self.amount}"]

        if self.amount < 0:
            return [f"amount cannot be negative, got {self.amount}"]
        if self.amount > MAX_AMOUNT:
            return [f"amount cannot exceed {MAX_AMOUNT}, got {self.amount}"]
        if self.amount != self.amount.quantize(AMOUNT_QUANTUM):
            return [f"amount must have at most 2 fractional digits, got {self.amount}"]
        return []

    def _timestamp_errors(self) -> list[str]:
        """타임스탬프 규칙 위반 목록을 반환합니다."""
        if not isinstance(self.timestamp, datetime):
            return [f"timestamp must be a datetime, got {type(self.timestamp).__name__}"]

        errors = []
        if self.timestamp.tzinfo is None:
            errors.append("timestamp must be timezone-aware (UTC)")
        elif self.timestamp.utcoffset() != timedelta(0):
            errors.append(f"timestamp must be UTC, got {self.timestamp.tzinfo}")
        if self.timestamp.microsecond != 0:
            errors.append("timestamp must have second precision")
        return errors

    def __str__(self) -> str:
        return (
            f"Transaction(transaction_id={self.transaction_id}, account_id={self.account_id}, "
            f"amount={self.amount}, timestamp={self.timestamp.isoformat()}, "
            f"location={self.location})"
        )
