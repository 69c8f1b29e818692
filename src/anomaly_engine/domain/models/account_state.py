"""
계정 상태 모델

계정별 워커가 배타적으로 소유하는 가변 집계 상태입니다.
실행 평균, 거래 수, 직전 위치/시각, 순위 계산용 최근 금액 집합과
마지막으로 확정된 거래의 순서 커서를 담습니다.

한 거래의 평가-발행 사이클은 clone()으로 만든 스테이징 복사본 위에서 수행되고,
모든 Alert가 발행된 후에만 레지스트리에 커밋됩니다.
"""

from bisect import bisect_left, bisect_right, insort
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal

from anomaly_engine.domain.models.transaction import Transaction


class RecentAmounts:
    """
    크기가 제한된 정렬 다중집합

    도착 순서(deque)와 정렬 순서(list)를 함께 유지하여
    윈도우를 넘는 가장 오래된 금액을 제거하면서도
    O(log n)으로 순위를 조회할 수 있습니다.

    Attributes:
        _window: 보관할 최대 금액 수 (None이면 무제한)
        _arrival: 도착 순서의 금액
        _sorted: 오름차순 정렬된 금액
    """

    def __init__(self, window: int | None = None) -> None:
        self._window = window
        self._arrival: deque[Decimal] = deque()
        self._sorted: list[Decimal] = []

    @property
    def window(self) -> int | None:
        return self._window

    def add(self, amount: Decimal) -> None:
        """금액을 추가하고, 윈도우를 넘으면 가장 오래된 금액을 제거합니다."""
        self._arrival.append(amount)
        insort(self._sorted, amount)

        if self._window is not None and len(self._arrival) > self._window:
            oldest = self._arrival.popleft()
            del self._sorted[bisect_left(self._sorted, oldest)]

    def count_greater(self, amount: Decimal) -> int:
        """amount보다 엄격하게 큰 금액의 수"""
        return len(self._sorted) - bisect_right(self._sorted, amount)

    def copy(self) -> "RecentAmounts":
        clone = RecentAmounts(self._window)
        clone._arrival = deque(self._arrival)
        clone._sorted = list(self._sorted)
        return clone

    def __len__(self) -> int:
        return len(self._sorted)

    def __iter__(self):
        return iter(self._sorted)


@dataclass
class AccountState:
    """
    계정별 가변 상태

    Attributes:
        account_id: 계정 ID
        mean: 지금까지 확정된 거래의 실행 평균 금액 (첫 거래 전에는 None)
        count: 지금까지 확정된 거래 수
        previous_location: 직전 거래 위치
        previous_timestamp: 직전 거래 시각
        recent_amounts: 순위 계산용 최근 금액 집합
        last_key: 마지막으로 확정된 거래의 (timestamp, transaction_id)
    """

    account_id: int
    mean: Decimal | None = None
    count: int = 0
    previous_location: str | None = None
    previous_timestamp: datetime | None = None
    recent_amounts: RecentAmounts = field(default_factory=RecentAmounts)
    last_key: tuple[datetime, str] | None = None

    def clone(self) -> "AccountState":
        """스테이징용 복사본을 반환합니다. 원본은 변경되지 않습니다."""
        return replace(self, recent_amounts=self.recent_amounts.copy())

    def mark_finalized(self, transaction: Transaction) -> None:
        """거래를 확정하고 순서 커서를 전진시킵니다."""
        self.last_key = transaction.sort_key

    def precedes_cursor(self, transaction: Transaction) -> bool:
        """거래가 이미 확정된 순서보다 앞서는지 확인합니다."""
        return self.last_key is not None and transaction.sort_key < self.last_key

    def is_finalized(self, transaction: Transaction) -> bool:
        """거래가 마지막으로 확정된 거래 자신인지 확인합니다."""
        return self.last_key is not None and transaction.sort_key == self.last_key


@dataclass(frozen=True)
class PriorSnapshot:
    """
    현재 거래를 반영하기 직전의 계정 상태 스냅샷

    규칙 평가기는 이 스냅샷만 읽으며, 현재 거래 자신은 포함되지 않습니다.

    Attributes:
        prior_mean: 이전 거래들의 평균 금액 (첫 거래면 None)
        prior_count: 이전 거래 수
        prior_location: 직전 거래 위치 (첫 거래면 None)
        prior_timestamp: 직전 거래 시각 (첫 거래면 None)
    """

    prior_mean: Decimal | None
    prior_count: int
    prior_location: str | None
    prior_timestamp: datetime | None


class AccountStateRegistry:
    """
    계정 ID로 인덱싱된 AccountState 저장소

    각 엔트리는 해당 계정의 워커만 접근하므로 락이 필요 없습니다.
    상태는 계정 수명 동안 유지되며 삭제되지 않습니다.
    """

    def __init__(self, rank_window: int | None = None) -> None:
        self._rank_window = rank_window
        self._states: dict[int, AccountState] = {}

    def get(self, account_id: int) -> AccountState | None:
        return self._states.get(account_id)

    def get_or_create(self, account_id: int) -> AccountState:
        state = self._states.get(account_id)
        if state is None:
            state = AccountState(
                account_id=account_id,
                recent_amounts=RecentAmounts(self._rank_window),
            )
            self._states[account_id] = state
        return state

    def commit(self, state: AccountState) -> None:
        """스테이징된 상태를 해당 계정의 현재 상태로 확정합니다."""
        self._states[state.account_id] = state

    def account_ids(self) -> list[int]:
        return sorted(self._states)

    def __len__(self) -> int:
        return len(self._states)
