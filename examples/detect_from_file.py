#!/usr/bin/env python3
"""
파일 기반 이상 거래 탐지 예제

JSON Lines 거래 파일을 평가하여 Alert 파일을 만들고 계정별 리포트를 출력합니다.

사용법:
    poetry run python examples/detect_from_file.py
    poetry run python examples/detect_from_file.py data/transactions.jsonl /tmp/alerts.jsonl

    # Kafka로 Alert 발행
    KAFKA_BOOTSTRAP_SERVERS=localhost:9092 poetry run python examples/detect_from_file.py
"""

import asyncio
import logging
import os
import sys
from pathlib import Path

# 프로젝트 루트를 Python 경로에 추가
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))

from anomaly_engine.application.use_cases.detect_anomalies import detect_anomalies
from anomaly_engine.infrastructure.config.engine_settings import engine_config_from_env
from anomaly_engine.infrastructure.serialization.json_utils import json_dumps

DEFAULT_TRANSACTIONS = Path(__file__).parent / "data" / "transactions.jsonl"
DEFAULT_ALERTS = Path(__file__).parent / "data" / "alerts.jsonl"


async def main() -> None:
    """메인 함수"""
    transactions_path = Path(sys.argv[1]) if len(sys.argv) > 1 else DEFAULT_TRANSACTIONS
    alerts_path = Path(sys.argv[2]) if len(sys.argv) > 2 else DEFAULT_ALERTS

    bootstrap_servers = os.environ.get("KAFKA_BOOTSTRAP_SERVERS")
    kafka_config = {"bootstrap.servers": bootstrap_servers} if bootstrap_servers else None

    reports = await detect_anomalies(
        transactions_path,
        alerts_path,
        config=engine_config_from_env(),
        kafka_config=kafka_config,
    )

    for report in reports:
        print(json_dumps(report.to_dict()))


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\n\n사용자에 의해 중단되었습니다.")
