"""
알림 저장소 포트 인터페이스

생성된 Alert를 보관하는 외부 저장소의 추상 인터페이스입니다.
"""

from abc import ABC, abstractmethod

from anomaly_engine.domain.models.alert import Alert, AlertReason


class AlertStore(ABC):
    """
    알림 저장소 포트 인터페이스

    Implementation Requirements:
        1. append()는 레코드 전체를 기록하거나 아무것도 기록하지 않아야 함 (부분 기록 금지)
        2. exists()는 (transaction_id, reason) 쌍으로 조회해야 함
        3. I/O 실패는 StoreUnavailableError로 변환되어야 함
    """

    @abstractmethod
    async def append(self, alert: Alert) -> None:
        """
        Alert 추가

        Args:
            alert: 추가할 Alert

        Raises:
            StoreUnavailableError: 저장소 I/O 실패 시
        """
        pass

    @abstractmethod
    async def exists(self, transaction_id: str, reason: AlertReason) -> bool:
        """
        (transaction_id, reason) 쌍의 Alert 존재 여부

        Args:
            transaction_id: 거래 ID
            reason: 알림 사유

        Returns:
            이미 존재하면 True

        Raises:
            StoreUnavailableError: 저장소 I/O 실패 시
        """
        pass

    @abstractmethod
    async def list_by_account(self, account_id: int) -> list[Alert]:
        """
        계정의 모든 Alert 조회

        Args:
            account_id: 계정 ID

        Returns:
            해당 계정의 Alert 리스트 (추가된 순서)

        Raises:
            StoreUnavailableError: 저장소 I/O 실패 시
        """
        pass
