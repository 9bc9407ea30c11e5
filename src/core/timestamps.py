"""ISO 8601 타임스탬프 유틸: 모든 비교는 UTC 기준"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Union

Timestamp = Union[str, datetime]


def to_utc(value: datetime) -> datetime:
    """naive datetime은 UTC로 간주한다."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Optional[Timestamp]) -> Optional[datetime]:
    """문자열/datetime → aware UTC datetime. 빈 값은 None.

    "Z" 접미사와 오프셋 모두 허용. 해석 불가 시 ValueError.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_utc(value)

    text = value.strip()
    if not text:
        return None
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise ValueError(f"Invalid timestamp: {value!r}") from e
    return to_utc(parsed)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(value: datetime) -> str:
    """JS Date.toISOString()과 같은 밀리초 + Z 형식."""
    return to_utc(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")
