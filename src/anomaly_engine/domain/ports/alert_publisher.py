"""
알림 발행자 포트 인터페이스

Alert Store에 기록된 Alert를 Kafka와 같은 메시지 브로커로 발행하는 발행자의 추상 인터페이스입니다.
Domain Layer는 이 인터페이스에만 의존하며, 실제 구현은 Infrastructure Layer에서 제공됩니다.
"""

from abc import ABC, abstractmethod

from anomaly_engine.domain.models.alert import Alert


class AlertPublisher(ABC):
    """
    알림 발행자 포트 인터페이스

    Architecture Note:
        - Port: Domain Layer가 정의하는 인터페이스
        - Adapter: KafkaAlertPublisher
        - Alert Store가 기준 저장소이며, 발행은 하위 시스템에 대한 통지입니다

    Implementation Requirements:
        1. publish()는 메시지를 버퍼에 추가하는 비동기 작업이어야 함
        2. flush()는 버퍼의 모든 메시지를 실제로 전송해야 함
        3. close()는 멱등해야 함
        4. publish() 실패 시 PublishException을 발생시켜야 함
    """

    @abstractmethod
    async def publish(self, alert: Alert) -> None:
        """
        Alert 발행

        Args:
            alert: 발행할 Alert

        Raises:
            PublishException: 발행 실패 시
        """
        pass

    @abstractmethod
    async def flush(self, timeout: float = 5.0) -> int:
        """
        버퍼 플러시

        Args:
            timeout: 최대 대기 시간 (초)

        Returns:
            전송되지 못한 메시지 수 (0이면 모두 성공)

        Raises:
            PublishException: 플러시 실패 시
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """
        리소스 정리 및 연결 종료

        Note:
            - 이 메서드는 멱등(idempotent)해야 합니다
        """
        pass
