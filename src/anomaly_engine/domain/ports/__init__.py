"""Domain Ports"""

from anomaly_engine.domain.ports.alert_publisher import AlertPublisher
from anomaly_engine.domain.ports.alert_store import AlertStore
from anomaly_engine.domain.ports.transaction_store import TransactionStore

__all__ = ["AlertPublisher", "AlertStore", "TransactionStore"]
