"""
거래 저장소 포트 인터페이스

거래 레코드를 보관하는 외부 저장소의 추상 인터페이스입니다.
Domain Layer는 이 인터페이스에만 의존하며, 실제 구현은 Infrastructure Layer에서 제공됩니다.
"""

from abc import ABC, abstractmethod

from anomaly_engine.domain.models.transaction import Transaction


class TransactionStore(ABC):
    """
    거래 저장소 포트 인터페이스

    Architecture Note:
        - Port: Domain Layer가 정의하는 인터페이스
        - Adapter: InMemoryTransactionStore, JsonLinesTransactionStore
        - 정렬은 Sequencer가 담당하므로 list_by_account()의 반환 순서는 보장하지 않아도 됨

    Implementation Requirements:
        1. append()는 이미 존재하는 transaction_id에 대해 DuplicateTransactionIdError를 발생시켜야 함
        2. 레코드는 한 번 추가된 후 변경되지 않아야 함
        3. I/O 실패는 StoreUnavailableError로 변환되어야 함
    """

    @abstractmethod
    async def list_by_account(self, account_id: int) -> list[Transaction]:
        """
        계정의 모든 거래 조회

        Args:
            account_id: 계정 ID

        Returns:
            해당 계정의 거래 리스트 (거래가 없으면 빈 리스트)

        Raises:
            StoreUnavailableError: 저장소 I/O 실패 시
        """
        pass

    @abstractmethod
    async def append(self, transaction: Transaction) -> None:
        """
        새 거래 추가

        Args:
            transaction: 추가할 거래

        Raises:
            DuplicateTransactionIdError: transaction_id가 이미 존재하는 경우
            StoreUnavailableError: 저장소 I/O 실패 시
        """
        pass

    @abstractmethod
    async def list_account_ids(self) -> list[int]:
        """
        거래가 존재하는 모든 계정 ID 조회

        Returns:
            오름차순 정렬된 계정 ID 리스트

        Raises:
            StoreUnavailableError: 저장소 I/O 실패 시
        """
        pass
