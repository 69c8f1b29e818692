"""
고성능 JSON 유틸리티

orjson을 사용합니다. JSON Lines 파일 I/O에 맞춰 dumps는 str(UTF-8)로 반환하며,
orjson이 기본 지원하지 않는 Decimal은 문자열로 직렬화합니다.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

import orjson


def _default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return str(obj)
    raise TypeError(f"Type is not JSON serializable: {type(obj).__name__}")


def json_loads(data: Any) -> Any:
    if isinstance(data, (bytes, bytearray, memoryview)):
        return orjson.loads(data)
    return orjson.loads(str(data).encode("utf-8"))


def json_dumps(obj: Any) -> str:
    return orjson.dumps(obj, default=_default, option=orjson.OPT_NON_STR_KEYS).decode("utf-8")


def json_dumps_bytes(obj: Any) -> bytes:
    # Kafka value 용
    return orjson.dumps(obj, default=_default, option=orjson.OPT_NON_STR_KEYS)
