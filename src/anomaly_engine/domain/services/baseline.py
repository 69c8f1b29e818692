"""
Baseline Calculator - 계정별 실행 평균 금액

현재 거래를 제외한 이전 거래들만으로 기준선을 유지합니다.
큰 금액의 거래가 자기 자신의 평균을 끌어올려 탐지 신호를 희석시키지 않도록
갱신 전 값(prior)을 먼저 반환한 뒤 현재 금액을 반영합니다.
"""

from decimal import Decimal

from anomaly_engine.domain.models.account_state import AccountState


class BaselineCalculator:
    """
    증분 평균 계산기

    new_mean = prior_mean + (amount - prior_mean) / (prior_count + 1)
    """

    def update(self, state: AccountState, amount: Decimal) -> tuple[Decimal | None, int]:
        """
        이전 평균/건수를 반환하고 현재 금액을 반영합니다.

        Args:
            state: 갱신할 계정 상태
            amount: 현재 거래 금액 (상위에서 검증된 0 이상의 고정 소수점 값)

        Returns:
            (prior_mean, prior_count). 첫 거래면 (None, 0)
        """
        prior_mean, prior_count = state.mean, state.count

        if prior_mean is None:
            state.mean = amount
        else:
            state.mean = prior_mean + (amount - prior_mean) / (prior_count + 1)
        state.count = prior_count + 1

        return prior_mean, prior_count
