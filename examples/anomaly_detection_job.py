#!/usr/bin/env python3
"""
Anomaly Detection Job 실행 스크립트

샘플 거래로 PyFlink 이상 거래 탐지 Job을 실행합니다.

사용법:
    # strict 모드
    poetry run python examples/anomaly_detection_job.py

    # lenient 모드 (60초 grace window)
    ANOMALY_ORDERING_MODE=lenient ANOMALY_GRACE_WINDOW_SECONDS=60 \
        poetry run python examples/anomaly_detection_job.py
"""

import logging
import sys
from pathlib import Path

# 프로젝트 루트를 Python 경로에 추가
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))

from anomaly_engine.infrastructure.config.engine_settings import engine_config_from_env
from anomaly_engine.infrastructure.flink.job import run_anomaly_detection_job


def main() -> None:
    """메인 함수"""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        run_anomaly_detection_job(engine_config_from_env())
    except KeyboardInterrupt:
        print("\n\n사용자에 의해 중단되었습니다.")
        sys.exit(0)
    except Exception:
        logging.getLogger(__name__).exception("Anomaly Detection Job failed")
        sys.exit(1)


if __name__ == "__main__":
    main()
