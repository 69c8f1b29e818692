"""
JSON Lines 파일 저장소 어댑터

한 줄에 레코드 하나를 기록하는 append-only 파일입니다.
레코드는 한 번의 write 호출로 줄 전체가 기록되며, 파일 I/O는 asyncio.to_thread로
이벤트 루프 밖에서 실행됩니다.

다른 프로세스가 같은 파일에 레코드를 추가하는 경우를 위해, 읽기 작업마다
마지막으로 읽은 위치 이후에 추가된 줄을 이어서 읽습니다 (tail).
"""

import asyncio
import logging
from pathlib import Path
from typing import Any

from anomaly_engine.domain.exceptions import (
    DuplicateTransactionIdError,
    StoreUnavailableError,
    ValidationException,
)
from anomaly_engine.domain.models.alert import Alert, AlertReason
from anomaly_engine.domain.models.transaction import Transaction
from anomaly_engine.domain.ports.alert_store import AlertStore
from anomaly_engine.domain.ports.transaction_store import TransactionStore
from anomaly_engine.infrastructure.serialization.json_utils import json_dumps, json_loads
from anomaly_engine.infrastructure.serialization.record_mapper import (
    alert_from_record,
    alert_to_record,
    transaction_from_record,
    transaction_to_record,
)

logger = logging.getLogger(__name__)


class JsonLinesFile:
    """
    append-only JSON Lines 파일 핸들

    Attributes:
        path: 파일 경로
        _offset: 지금까지 읽은 바이트 위치 (완전한 줄 단위)
        _line_number: 지금까지 읽은 줄 수
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._offset = 0
        self._line_number = 0

    async def read_new(self) -> list[tuple[int, Any]]:
        """
        마지막 위치 이후에 추가된 완전한 줄을 읽어 파싱합니다.

        JSON으로 파싱할 수 없는 줄은 경고를 남기고 건너뜁니다.
        개행으로 끝나지 않은 마지막 줄은 다음 읽기까지 남겨둡니다.

        Returns:
            (줄 번호, 파싱된 객체) 리스트

        Raises:
            StoreUnavailableError: 파일을 읽을 수 없는 경우
        """
        try:
            data = await asyncio.to_thread(self._read_from, self._offset)
        except OSError as e:
            raise StoreUnavailableError(f"Failed to read {self.path}", cause=e)

        end = data.rfind(b"\n")
        if end < 0:
            return []
        complete = data[: end + 1]
        self._offset += len(complete)

        parsed = []
        for raw_line in complete.splitlines():
            self._line_number += 1
            if not raw_line.strip():
                continue
            try:
                parsed.append((self._line_number, json_loads(raw_line)))
            except ValueError as e:
                logger.warning(f"Skipping malformed line {self._line_number} in {self.path}: {e}")
        return parsed

    async def append(self, record: dict[str, Any]) -> None:
        """
        레코드 한 줄을 추가합니다.

        Raises:
            StoreUnavailableError: 파일에 쓸 수 없는 경우
        """
        line = json_dumps(record) + "\n"
        try:
            await asyncio.to_thread(self._write_line, line)
        except OSError as e:
            raise StoreUnavailableError(f"Failed to append to {self.path}", cause=e)

    def _read_from(self, offset: int) -> bytes:
        if not self.path.exists():
            return b""
        with self.path.open("rb") as f:
            f.seek(offset)
            return f.read()

    def _write_line(self, line: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(line)
            f.flush()


class JsonLinesTransactionStore(TransactionStore):
    """
    JSON Lines 거래 저장소

    형식이 잘못된 레코드는 경고를 남기고 건너뜁니다.
    도메인 규칙 위반(금액 정밀도 등)은 엔진이 검증 단계에서 진단합니다.

    Examples:
        >>> store = await JsonLinesTransactionStore.open("data/transactions.jsonl")
        >>> await store.list_account_ids()
        [1, 2, 3]
    """

    def __init__(self, path: str | Path) -> None:
        self._file = JsonLinesFile(path)
        self._lock = asyncio.Lock()
        self._ids: set[str] = set()
        self._by_account: dict[int, list[Transaction]] = {}
        self._malformed = 0

    @classmethod
    async def open(cls, path: str | Path) -> "JsonLinesTransactionStore":
        store = cls(path)
        await store.refresh()
        logger.info(f"Opened transaction store {store.path} ({len(store)} transactions)")
        return store

    @property
    def path(self) -> Path:
        return self._file.path

    @property
    def malformed_count(self) -> int:
        return self._malformed

    async def refresh(self) -> None:
        """파일에 새로 추가된 레코드를 읽어 들입니다."""
        async with self._lock:
            await self._refresh_locked()

    async def _refresh_locked(self) -> None:
        for line_number, record in await self._file.read_new():
            try:
                transaction = transaction_from_record(record)
            except ValidationException as e:
                self._malformed += 1
                logger.warning(f"Skipping line {line_number} in {self.path}: {e}")
                continue

            if transaction.transaction_id in self._ids:
                logger.warning(
                    f"Duplicate transaction id {transaction.transaction_id!r} at line {line_number} in {self.path}"
                )
            self._ids.add(transaction.transaction_id)
            self._by_account.setdefault(transaction.account_id, []).append(transaction)

    async def list_by_account(self, account_id: int) -> list[Transaction]:
        await self.refresh()
        return list(self._by_account.get(account_id, []))

    async def append(self, transaction: Transaction) -> None:
        async with self._lock:
            await self._refresh_locked()
            if transaction.transaction_id in self._ids:
                raise DuplicateTransactionIdError(transaction.transaction_id)
            await self._file.append(transaction_to_record(transaction))
            await self._refresh_locked()

    async def list_account_ids(self) -> list[int]:
        await self.refresh()
        return sorted(self._by_account)

    def __len__(self) -> int:
        return sum(len(transactions) for transactions in self._by_account.values())


class JsonLinesAlertStore(AlertStore):
    """JSON Lines 알림 저장소"""

    def __init__(self, path: str | Path) -> None:
        self._file = JsonLinesFile(path)
        self._lock = asyncio.Lock()
        self._alerts: list[Alert] = []
        self._keys: set[tuple[str, AlertReason]] = set()

    @classmethod
    async def open(cls, path: str | Path) -> "JsonLinesAlertStore":
        store = cls(path)
        await store.refresh()
        logger.info(f"Opened alert store {store.path} ({len(store)} alerts)")
        return store

    @property
    def path(self) -> Path:
        return self._file.path

    async def refresh(self) -> None:
        async with self._lock:
            await self._refresh_locked()

    async def _refresh_locked(self) -> None:
        for line_number, record in await self._file.read_new():
            try:
                alert = alert_from_record(record)
            except ValidationException as e:
                logger.warning(f"Skipping line {line_number} in {self.path}: {e}")
                continue
            self._alerts.append(alert)
            self._keys.add(alert.dedup_key)

    async def append(self, alert: Alert) -> None:
        async with self._lock:
            await self._file.append(alert_to_record(alert))
            await self._refresh_locked()

    async def exists(self, transaction_id: str, reason: AlertReason) -> bool:
        await self.refresh()
        return (transaction_id, reason) in self._keys

    async def list_by_account(self, account_id: int) -> list[Alert]:
        await self.refresh()
        return [alert for alert in self._alerts if alert.account_id == account_id]

    def __len__(self) -> int:
        return len(self._alerts)
