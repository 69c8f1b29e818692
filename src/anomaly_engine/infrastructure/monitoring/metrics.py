"""
탐지 엔진 Prometheus 메트릭

주의: 모듈 단위 등록. 테스트 프로세스 내 중복 import 환경이 아니라고 가정합니다.
"""

from prometheus_client import Counter, Gauge, Histogram

TRANSACTIONS_EVALUATED = Counter(
    "anomaly_engine_transactions_evaluated_total",
    "Number of transactions processed by the engine",
    ["result"],  # flagged | clean | skipped
)

ALERTS_EMITTED = Counter(
    "anomaly_engine_alerts_emitted_total",
    "Number of alerts appended to the alert store",
    ["reason"],
)

ALERTS_DEDUPLICATED = Counter(
    "anomaly_engine_alerts_deduplicated_total",
    "Number of alerts skipped because (transaction_id, reason) already existed",
    ["reason"],
)

ALERT_PUBLISH_FAILURES = Counter(
    "anomaly_engine_alert_publish_failures_total",
    "Number of stored alerts that could not be handed to the publisher",
)

STORE_RETRIES = Counter(
    "anomaly_engine_store_retries_total",
    "Number of store operations retried after StoreUnavailableError",
)

WORKERS_HALTED = Counter(
    "anomaly_engine_workers_halted_total",
    "Number of account workers halted by a fatal error",
    ["error"],
)

PENDING_TRANSACTIONS = Gauge(
    "anomaly_engine_pending_transactions",
    "Transactions buffered behind the lenient-mode watermark",
)

PROCESSING_LATENCY = Histogram(
    "anomaly_engine_transaction_processing_seconds",
    "Latency of one evaluate-and-emit cycle",
)
