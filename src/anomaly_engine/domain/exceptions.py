"""
이상 거래 탐지 엔진 예외 정의

이 모듈은 탐지 엔진에서 발생할 수 있는 모든 예외를 정의합니다.
모든 예외는 명확한 계층 구조를 가지며, 컨텍스트 정보를 포함하고
예외 체이닝(__cause__)을 지원합니다.

예외 계층 구조:
    Exception
    └── AnomalyEngineException (기본 예외)
        ├── ValidationException (검증 실패)
        │   ├── InvalidTransactionError
        │   └── InvalidConfigurationError
        ├── StoreException (저장소 관련)
        │   ├── DuplicateTransactionIdError
        │   └── StoreUnavailableError
        ├── OrderingException (계정별 순서 관련)
        │   ├── OrderingAmbiguousError
        │   └── OutOfOrderTransactionError
        └── PublishException (알림 발행 실패)

처리 정책:
    - OrderingAmbiguousError, 재시도 후에도 지속되는 StoreUnavailableError는
      해당 계정 워커에 치명적입니다 (계정 처리 중단).
    - 그 외 예외는 진단 정보를 남기고 해당 거래만 건너뜁니다.
"""

from datetime import datetime


class AnomalyEngineException(Exception):
    """
    탐지 엔진의 기본 예외 클래스

    모든 탐지 엔진 예외의 부모 클래스입니다.
    이 예외를 catch하면 탐지 엔진의 모든 예외를 처리할 수 있습니다.

    Attributes:
        message: 예외 메시지 (컨텍스트 정보 포함)

    Examples:
        >>> try:
        ...     raise AnomalyEngineException("Failed to process account 42")
        ... except AnomalyEngineException as e:
        ...     print(f"Error: {e}")
        Error: Failed to process account 42

        >>> # 예외 체이닝 사용
        >>> try:
        ...     raise OSError("Disk full")
        ... except OSError as e:
        ...     raise AnomalyEngineException("Failed to append alert", cause=e)
    """

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        """
        Args:
            message: 예외 메시지. 가능한 많은 컨텍스트 정보를 포함해야 합니다.
                    (예: "Failed to append alert for transaction T-1 after 5 attempts")
            cause: 이 예외를 발생시킨 원본 예외 (선택 사항)
        """
        self.message = message
        super().__init__(message)
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        """예외를 문자열로 표현"""
        if self.__cause__:
            return f"{self.message} (Caused by: {self.__cause__})"
        return self.message


class ValidationException(AnomalyEngineException):
    """
    데이터 검증 실패 예외

    잘못된 금액, 타임스탬프, 위치 등 거래 레코드의 형식 오류나
    잘못된 설정값 등 비즈니스 규칙 위반을 나타냅니다.

    Examples:
        >>> errors = [
        ...     "amount must have at most 2 fractional digits",
        ...     "location cannot be empty",
        ... ]
        >>> exc = ValidationException(f"Validation failed: {'; '.join(errors)}")
    """

    pass


class InvalidTransactionError(ValidationException):
    """거래 레코드의 금액/타임스탬프/위치 등이 잘못되었음을 나타냅니다."""

    pass


class InvalidConfigurationError(ValidationException):
    """잘못된 설정 값을 나타냅니다."""

    pass


class StoreException(AnomalyEngineException):
    """
    저장소 관련 예외

    Transaction Store, Alert Store에 대한 읽기/쓰기 과정에서 발생하는
    에러를 나타냅니다.
    """

    pass


class DuplicateTransactionIdError(StoreException):
    """
    이미 존재하는 거래 ID로 append를 시도했음을 나타냅니다.

    쓰기는 거부되며, 해당 거래는 처리 파이프라인에 들어가지 않습니다.

    Attributes:
        transaction_id: 중복된 거래 ID
    """

    def __init__(self, transaction_id: str, cause: Exception | None = None) -> None:
        self.transaction_id = transaction_id
        super().__init__(f"Transaction id already exists: {transaction_id!r}", cause=cause)


class StoreUnavailableError(StoreException):
    """
    저장소 I/O 실패를 나타냅니다.

    저장소 경계에서 지수 백오프로 재시도되며, 재시도 한도를 넘으면
    해당 계정 워커를 중단시킵니다.
    """

    pass


class OrderingException(AnomalyEngineException):
    """
    계정별 거래 순서 관련 예외

    각 계정의 거래는 (timestamp, transaction_id) 순서로 엄격하게
    평가되어야 합니다. 이 순서를 보장할 수 없는 경우를 나타냅니다.
    """

    pass


class OrderingAmbiguousError(OrderingException):
    """
    동일한 timestamp와 transaction_id를 가진 거래가 두 건 이상 존재함을 나타냅니다.

    저장소 수준의 데이터 무결성 오류이며, 임의로 해소하지 않고 보고합니다.
    해당 계정의 처리는 문제가 해결될 때까지 중단됩니다.

    Attributes:
        account_id: 문제가 발생한 계정 ID
        transaction_id: 충돌한 거래 ID
        timestamp: 충돌한 타임스탬프
    """

    def __init__(self, account_id: int, transaction_id: str, timestamp: datetime) -> None:
        self.account_id = account_id
        self.transaction_id = transaction_id
        self.timestamp = timestamp
        super().__init__(
            f"Ambiguous ordering for account {account_id}: duplicate "
            f"(timestamp={timestamp.isoformat()}, transaction_id={transaction_id!r})"
        )


class OutOfOrderTransactionError(OrderingException):
    """
    이미 확정된 계정 순서보다 이른 타임스탬프의 거래가 도착했음을 나타냅니다.

    Attributes:
        account_id: 계정 ID
        transaction_id: 늦게 도착한 거래 ID
    """

    def __init__(self, account_id: int, transaction_id: str, message: str) -> None:
        self.account_id = account_id
        self.transaction_id = transaction_id
        super().__init__(message)


class PublishException(AnomalyEngineException):
    """
    알림 발행 실패 예외

    Kafka 브로커 연결 실패, 메시지 전송 타임아웃, 직렬화 실패 등
    생성된 Alert를 하위 시스템으로 발행하는 과정에서 발생하는 에러를 나타냅니다.
    Alert Store에 기록된 Alert는 발행 실패와 무관하게 유지됩니다.
    """

    pass
