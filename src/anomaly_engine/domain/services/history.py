"""History Tracker - 계정별 직전 거래의 위치/시각 (단일 슬롯)"""

from datetime import datetime

from anomaly_engine.domain.models.account_state import AccountState


class HistoryTracker:
    """직전 관측값 하나만 보관하는 계정별 캐시"""

    def update(
        self, state: AccountState, location: str, timestamp: datetime
    ) -> tuple[str | None, datetime | None]:
        """
        직전 거래의 위치/시각을 반환하고 현재 값을 저장합니다.

        Args:
            state: 갱신할 계정 상태
            location: 현재 거래 위치
            timestamp: 현재 거래 시각

        Returns:
            (prior_location, prior_timestamp). 첫 거래면 (None, None)
        """
        prior = (state.previous_location, state.previous_timestamp)
        state.previous_location = location
        state.previous_timestamp = timestamp
        return prior
