"""
Record mapper utilities for converting persisted rows into domain objects and back.

Transaction rows follow the transactions table layout:
    {transaction_id, account_id, amount, transaction_date, transaction_time?,
     merchant, location, transaction_type, is_fraud}

Alert rows follow the alerts table layout:
    {alert_id, transaction_id, account_id, alert_reason, created_at}
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from anomaly_engine.domain.exceptions import InvalidTransactionError, ValidationException
from anomaly_engine.domain.models.alert import Alert, AlertReason
from anomaly_engine.domain.models.transaction import Transaction

logger = logging.getLogger(__name__)

_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"
_TIME_FORMAT = "%H:%M:%S"


# -------------------------
# Field helpers
# -------------------------
def _parse_datetime(value: Any) -> datetime:
    """Parse an ISO-8601 / MySQL DATETIME value. Naive values are interpreted as UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        parsed = datetime.fromisoformat(value.strip())
    else:
        raise TypeError(f"expected datetime string, got {type(value).__name__}")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _parse_time(value: Any) -> time:
    if isinstance(value, time):
        return value
    if isinstance(value, str):
        return time.fromisoformat(value.strip())
    raise TypeError(f"expected time string, got {type(value).__name__}")


def _parse_amount(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise TypeError("amount cannot be a boolean")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float, str)):
        return Decimal(str(value).strip())
    raise TypeError(f"expected numeric amount, got {type(value).__name__}")


def _parse_account_id(value: Any) -> int:
    if isinstance(value, bool):
        raise TypeError("account_id cannot be a boolean")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise TypeError(f"expected integer account_id, got {value!r}")


def _parse_flag(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str) and value.strip().lower() in ("0", "1", "true", "false"):
        return value.strip().lower() in ("1", "true")
    raise TypeError(f"expected boolean flag, got {value!r}")


def combine_date_and_time(transaction_date: Any, transaction_time: Any | None) -> datetime:
    """
    Build the event timestamp from transaction_date and the optional transaction_time column.

    When transaction_time is present it replaces the time-of-day part of transaction_date.
    """
    timestamp = _parse_datetime(transaction_date)
    if transaction_time is None or transaction_time == "":
        return timestamp
    clock = _parse_time(transaction_time)
    return timestamp.replace(
        hour=clock.hour, minute=clock.minute, second=clock.second, microsecond=clock.microsecond
    )


# -------------------------
# Transactions
# -------------------------
def transaction_from_record(record: Mapping[str, Any]) -> Transaction:
    """
    Convert a transactions row into a Transaction.

    Only structural problems are reported here (missing fields, unparsable values).
    Domain rules such as amount precision are checked later by Transaction.validate().

    Raises:
        InvalidTransactionError: if the record is malformed
    """
    if not isinstance(record, Mapping):
        raise InvalidTransactionError(f"Malformed transaction record: expected object, got {type(record).__name__}")

    try:
        return Transaction(
            transaction_id=str(record["transaction_id"]),
            account_id=_parse_account_id(record["account_id"]),
            amount=_parse_amount(record["amount"]),
            timestamp=combine_date_and_time(record["transaction_date"], record.get("transaction_time")),
            merchant=str(record.get("merchant") or ""),
            location=str(record.get("location") or ""),
            transaction_type=str(record.get("transaction_type") or ""),
            is_fraud=_parse_flag(record.get("is_fraud")),
        )
    except KeyError as e:
        raise InvalidTransactionError(f"Malformed transaction record: missing field {e.args[0]!r}", cause=e)
    except (TypeError, ValueError, InvalidOperation) as e:
        transaction_id = record.get("transaction_id", "<unknown>")
        raise InvalidTransactionError(
            f"Malformed transaction record {transaction_id!r}: {e}", cause=e
        )


def transaction_to_record(transaction: Transaction) -> dict[str, Any]:
    timestamp = transaction.timestamp.astimezone(UTC)
    return {
        "transaction_id": transaction.transaction_id,
        "account_id": transaction.account_id,
        "amount": str(transaction.amount),
        "transaction_date": timestamp.strftime(_DATETIME_FORMAT),
        "transaction_time": timestamp.strftime(_TIME_FORMAT),
        "merchant": transaction.merchant,
        "location": transaction.location,
        "transaction_type": transaction.transaction_type,
        "is_fraud": transaction.is_fraud,
    }


# -------------------------
# Alerts
# -------------------------
def alert_to_record(alert: Alert) -> dict[str, Any]:
    return {
        "alert_id": alert.alert_id,
        "transaction_id": alert.transaction_id,
        "account_id": alert.account_id,
        "alert_reason": alert.reason.value,
        "created_at": alert.created_at.astimezone(UTC).isoformat(),
    }


def alert_from_record(record: Mapping[str, Any]) -> Alert:
    """
    Convert an alerts row into an Alert.

    Raises:
        ValidationException: if the record is malformed or the reason is unknown
    """
    try:
        return Alert(
            alert_id=str(record["alert_id"]),
            transaction_id=str(record["transaction_id"]),
            account_id=_parse_account_id(record["account_id"]),
            reason=AlertReason(record["alert_reason"]),
            created_at=_parse_datetime(record["created_at"]),
        )
    except KeyError as e:
        raise ValidationException(f"Malformed alert record: missing field {e.args[0]!r}", cause=e)
    except (TypeError, ValueError) as e:
        raise ValidationException(f"Malformed alert record: {e}", cause=e)
