"""
탐지 엔진 설정 팩토리 테스트
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from anomaly_engine.domain.exceptions import InvalidConfigurationError
from anomaly_engine.domain.models.engine_config import OrderingMode
from anomaly_engine.infrastructure.config.engine_settings import (
    DEFAULT_ANOMALY_MULTIPLIER,
    DEFAULT_MAX_CONCURRENT_ACCOUNTS,
    DEFAULT_RAPID_SUCCESSION_SECONDS,
    create_engine_config,
    engine_config_from_env,
)


class TestCreateEngineConfig:
    """create_engine_config 함수 테스트"""

    def test_기본_설정(self) -> None:
        """
        GIVEN: 인자 없음
        WHEN: create_engine_config를 호출할 때
        THEN: 5분 / 3배 / strict 기본값이 적용되어야 함
        """
        # WHEN
        config = create_engine_config()

        # THEN
        assert config.rapid_succession_threshold == timedelta(seconds=DEFAULT_RAPID_SUCCESSION_SECONDS)
        assert config.anomaly_multiplier == DEFAULT_ANOMALY_MULTIPLIER
        assert config.ordering_mode == OrderingMode.STRICT
        assert config.grace_window == timedelta(0)
        assert config.rank_window is None
        assert config.max_concurrent_accounts == DEFAULT_MAX_CONCURRENT_ACCOUNTS

    def test_초_단위_값을_변환(self) -> None:
        config = create_engine_config(
            rapid_succession_seconds=60,
            anomaly_multiplier="2.5",
            ordering_mode="lenient",
            grace_window_seconds=30,
            rank_window=100,
            store_retry_attempts=2,
            store_retry_base_seconds=0.5,
            store_retry_max_seconds=1.0,
        )

        assert config.rapid_succession_threshold == timedelta(minutes=1)
        assert config.anomaly_multiplier == Decimal("2.5")
        assert config.is_lenient is True
        assert config.grace_window == timedelta(seconds=30)
        assert config.rank_window == 100
        assert config.store_retry.max_attempts == 2
        assert config.store_retry.delay_for(5) == 1.0

    def test_잘못된_값은_InvalidConfigurationError(self) -> None:
        with pytest.raises(InvalidConfigurationError, match="grace_window requires ordering_mode=lenient"):
            create_engine_config(grace_window_seconds=10)


class TestEngineConfigFromEnv:
    """engine_config_from_env 함수 테스트"""

    def test_환경_변수가_없으면_기본값(self) -> None:
        assert engine_config_from_env({}) == create_engine_config()

    def test_환경_변수_적용(self) -> None:
        """
        GIVEN: ANOMALY_* 환경 변수
        WHEN: engine_config_from_env를 호출할 때
        THEN: 값이 변환되어 적용되어야 함
        """
        # GIVEN
        environ = {
            "ANOMALY_RAPID_SUCCESSION_SECONDS": "120",
            "ANOMALY_MULTIPLIER": "4",
            "ANOMALY_ORDERING_MODE": "LENIENT",
            "ANOMALY_GRACE_WINDOW_SECONDS": "15",
            "ANOMALY_RANK_WINDOW": "50",
            "ANOMALY_MAX_CONCURRENT_ACCOUNTS": "8",
            "ANOMALY_STORE_RETRY_ATTEMPTS": "3",
            "UNRELATED": "ignored",
        }

        # WHEN
        config = engine_config_from_env(environ)

        # THEN
        assert config.rapid_succession_threshold == timedelta(minutes=2)
        assert config.anomaly_multiplier == Decimal("4")
        assert config.ordering_mode == OrderingMode.LENIENT
        assert config.grace_window == timedelta(seconds=15)
        assert config.rank_window == 50
        assert config.max_concurrent_accounts == 8
        assert config.store_retry.max_attempts == 3

    def test_빈_값은_기본값(self) -> None:
        config = engine_config_from_env({"ANOMALY_RANK_WINDOW": "  ", "ANOMALY_MULTIPLIER": ""})

        assert config.rank_window is None
        assert config.anomaly_multiplier == DEFAULT_ANOMALY_MULTIPLIER

    @pytest.mark.parametrize(
        "name, value",
        [
            ("ANOMALY_RAPID_SUCCESSION_SECONDS", "five"),
            ("ANOMALY_MULTIPLIER", "x3"),
            ("ANOMALY_RANK_WINDOW", "1.5"),
        ],
    )
    def test_변환할_수_없는_값(self, name: str, value: str) -> None:
        with pytest.raises(InvalidConfigurationError) as exc_info:
            engine_config_from_env({name: value})

        assert name in str(exc_info.value)

    def test_검증_실패는_그대로_전파(self) -> None:
        with pytest.raises(InvalidConfigurationError, match="max_concurrent_accounts"):
            engine_config_from_env({"ANOMALY_MAX_CONCURRENT_ACCOUNTS": "0"})
