"""
JSON Lines 저장소 테스트

파일 tail 읽기, 깨진 줄 처리, 중복 ID 거부, I/O 오류 변환을 검증합니다.
"""

from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from unittest.mock import patch

import orjson
import pytest

from anomaly_engine.domain.exceptions import DuplicateTransactionIdError, StoreUnavailableError
from anomaly_engine.domain.models.alert import Alert, AlertReason
from anomaly_engine.domain.models.transaction import Transaction
from anomaly_engine.infrastructure.persistence.jsonl_store import (
    JsonLinesAlertStore,
    JsonLinesFile,
    JsonLinesTransactionStore,
)

BASE = datetime(2024, 1, 1, 10, 0, 0, tzinfo=UTC)


def _record(transaction_id: str, account_id: int = 1, amount: str = "10.00") -> dict:
    return {
        "transaction_id": transaction_id,
        "account_id": account_id,
        "amount": amount,
        "transaction_date": "2024-01-01 10:00:00",
        "merchant": "Shop",
        "location": "Seoul",
        "transaction_type": "Debit",
        "is_fraud": False,
    }


def _write_lines(path: Path, *lines: str) -> None:
    with path.open("a", encoding="utf-8") as f:
        for line in lines:
            f.write(line + "\n")


def _txn(transaction_id: str, account_id: int = 1) -> Transaction:
    return Transaction(
        transaction_id=transaction_id,
        account_id=account_id,
        amount=Decimal("10.00"),
        timestamp=BASE,
        merchant="Shop",
        location="Seoul",
        transaction_type="Debit",
    )


class TestJsonLinesFile:
    """JsonLinesFile 테스트"""

    @pytest.mark.asyncio
    async def test_새로_추가된_줄만_읽음(self, tmp_path: Path) -> None:
        path = tmp_path / "data.jsonl"
        _write_lines(path, '{"a": 1}')
        handle = JsonLinesFile(path)

        first = await handle.read_new()
        _write_lines(path, '{"a": 2}')
        second = await handle.read_new()

        assert first == [(1, {"a": 1})]
        assert second == [(2, {"a": 2})]
        assert await handle.read_new() == []

    @pytest.mark.asyncio
    async def test_개행_없는_마지막_줄은_다음_읽기로(self, tmp_path: Path) -> None:
        """
        GIVEN: 마지막 줄이 아직 개행으로 끝나지 않은 파일
        WHEN: read_new()를 호출하면
        THEN: 완전한 줄만 반환하고, 줄이 완성되면 다음 읽기에서 반환해야 한다
        """
        # GIVEN
        path = tmp_path / "data.jsonl"
        path.write_bytes(b'{"a": 1}\n{"a": ')
        handle = JsonLinesFile(path)

        # WHEN
        first = await handle.read_new()
        with path.open("ab") as f:
            f.write(b"2}\n")
        second = await handle.read_new()

        # THEN
        assert first == [(1, {"a": 1})]
        assert second == [(2, {"a": 2})]

    @pytest.mark.asyncio
    async def test_깨진_줄과_빈_줄은_건너뜀(self, tmp_path: Path) -> None:
        path = tmp_path / "data.jsonl"
        _write_lines(path, "{broken", "", '{"ok": true}')

        assert await JsonLinesFile(path).read_new() == [(3, {"ok": True})]

    @pytest.mark.asyncio
    async def test_없는_파일은_빈_결과(self, tmp_path: Path) -> None:
        assert await JsonLinesFile(tmp_path / "missing.jsonl").read_new() == []

    @pytest.mark.asyncio
    async def test_append는_상위_디렉터리를_생성(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "dir" / "data.jsonl"

        await JsonLinesFile(path).append({"amount": Decimal("1.50")})

        assert orjson.loads(path.read_text(encoding="utf-8")) == {"amount": "1.50"}

    @pytest.mark.asyncio
    async def test_읽기_OSError는_StoreUnavailableError(self, tmp_path: Path) -> None:
        handle = JsonLinesFile(tmp_path / "data.jsonl")

        with patch.object(handle, "_read_from", side_effect=PermissionError("denied")):
            with pytest.raises(StoreUnavailableError) as exc_info:
                await handle.read_new()

        assert isinstance(exc_info.value.__cause__, PermissionError)

    @pytest.mark.asyncio
    async def test_쓰기_OSError는_StoreUnavailableError(self, tmp_path: Path) -> None:
        handle = JsonLinesFile(tmp_path / "data.jsonl")

        with patch.object(handle, "_write_line", side_effect=OSError("disk full")):
            with pytest.raises(StoreUnavailableError):
                await handle.append({"a": 1})


class TestJsonLinesTransactionStore:
    """JsonLinesTransactionStore 테스트"""

    @pytest.mark.asyncio
    async def test_파일을_열고_계정별_조회(self, tmp_path: Path) -> None:
        """
        GIVEN: 형식 오류 레코드가 섞인 거래 파일
        WHEN: 저장소를 열면
        THEN: 형식 오류 레코드는 건너뛰고 나머지는 계정별로 조회되어야 한다
        """
        # GIVEN
        path = tmp_path / "transactions.jsonl"
        _write_lines(
            path,
            orjson.dumps(_record("T-1", 1)).decode(),
            orjson.dumps({"transaction_id": "T-X", "account_id": 1}).decode(),
            orjson.dumps(_record("T-2", 2)).decode(),
        )

        # WHEN
        store = await JsonLinesTransactionStore.open(path)

        # THEN
        assert store.path == path
        assert store.malformed_count == 1
        assert await store.list_account_ids() == [1, 2]
        assert [t.transaction_id for t in await store.list_by_account(1)] == ["T-1"]
        assert len(store) == 2

    @pytest.mark.asyncio
    async def test_도메인_규칙_위반은_엔진에_맡김(self, tmp_path: Path) -> None:
        path = tmp_path / "transactions.jsonl"
        _write_lines(path, orjson.dumps(_record("T-1", amount="1.005")).decode())

        store = await JsonLinesTransactionStore.open(path)

        (transaction,) = await store.list_by_account(1)
        assert transaction.amount == Decimal("1.005")
        assert store.malformed_count == 0

    @pytest.mark.asyncio
    async def test_다른_프로세스가_추가한_레코드를_읽음(self, tmp_path: Path) -> None:
        path = tmp_path / "transactions.jsonl"
        store = await JsonLinesTransactionStore.open(path)

        _write_lines(path, orjson.dumps(_record("T-9", 9)).decode())

        assert await store.list_account_ids() == [9]

    @pytest.mark.asyncio
    async def test_append_후_조회(self, tmp_path: Path) -> None:
        path = tmp_path / "transactions.jsonl"
        store = await JsonLinesTransactionStore.open(path)

        await store.append(_txn("T-1"))

        (transaction,) = await store.list_by_account(1)
        assert transaction == _txn("T-1")
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_중복_ID_append는_거부(self, tmp_path: Path) -> None:
        path = tmp_path / "transactions.jsonl"
        _write_lines(path, orjson.dumps(_record("T-1")).decode())
        store = await JsonLinesTransactionStore.open(path)

        with pytest.raises(DuplicateTransactionIdError):
            await store.append(_txn("T-1", account_id=2))

        assert len(path.read_text(encoding="utf-8").splitlines()) == 1


class TestJsonLinesAlertStore:
    """JsonLinesAlertStore 테스트"""

    @pytest.mark.asyncio
    async def test_기록한_Alert를_다시_열어도_유지(self, tmp_path: Path) -> None:
        """
        GIVEN: Alert 한 건을 기록한 파일
        WHEN: 새 저장소로 다시 열면
        THEN: 같은 (transaction_id, reason)의 존재가 확인되어야 한다
        """
        # GIVEN
        path = tmp_path / "alerts.jsonl"
        alert = Alert.create(_txn("T-1", 3), AlertReason.HIGH_TRANSACTION_AMOUNT, BASE)
        await (await JsonLinesAlertStore.open(path)).append(alert)

        # WHEN
        reopened = await JsonLinesAlertStore.open(path)

        # THEN
        assert await reopened.exists("T-1", AlertReason.HIGH_TRANSACTION_AMOUNT) is True
        assert await reopened.exists("T-1", AlertReason.LOCATION_CHANGE) is False
        assert await reopened.list_by_account(3) == [alert]
        assert len(reopened) == 1

    @pytest.mark.asyncio
    async def test_알_수_없는_사유는_건너뜀(self, tmp_path: Path) -> None:
        path = tmp_path / "alerts.jsonl"
        _write_lines(
            path,
            orjson.dumps(
                {
                    "alert_id": "x",
                    "transaction_id": "T-1",
                    "account_id": 1,
                    "alert_reason": "Unknown",
                    "created_at": "2024-01-01T00:00:00+00:00",
                }
            ).decode(),
        )

        store = await JsonLinesAlertStore.open(path)

        assert len(store) == 0
