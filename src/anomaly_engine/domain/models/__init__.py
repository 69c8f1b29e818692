"""Domain Models"""

from anomaly_engine.domain.models.account_state import (
    AccountState,
    AccountStateRegistry,
    PriorSnapshot,
    RecentAmounts,
)
from anomaly_engine.domain.models.alert import Alert, AlertReason
from anomaly_engine.domain.models.engine_config import EngineConfig, OrderingMode, RetryPolicy
from anomaly_engine.domain.models.report import AccountReport
from anomaly_engine.domain.models.transaction import Transaction

__all__ = [
    "AccountReport",
    "AccountState",
    "AccountStateRegistry",
    "Alert",
    "AlertReason",
    "EngineConfig",
    "OrderingMode",
    "PriorSnapshot",
    "RecentAmounts",
    "RetryPolicy",
    "Transaction",
]
