"""일일 sync 제한 판정 (순수 Python)

UTC 달력 날짜 기준 하루 1회. 경과 24시간 기준이 아니다.
예외: 민팅 당일, 민팅 이후 sync 이력이 없으면 허용.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from src.core.timestamps import Timestamp, parse_timestamp, to_utc

logger = logging.getLogger(__name__)

# dateOfBirth와 lastUpdated가 이 차이 미만이면 "민팅 후 sync 없음"
NEVER_SYNCED_TOLERANCE = timedelta(seconds=1)


@dataclass(frozen=True)
class SyncDecision:
    allowed: bool
    hours_until_next: int = 0

    @property
    def message(self) -> Optional[str]:
        if self.allowed:
            return None
        return (
            "You've already synced today. "
            f"You can sync again in {self.hours_until_next} hours."
        )


def next_utc_midnight(now: datetime) -> datetime:
    now = to_utc(now)
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return today + timedelta(days=1)


def hours_until_next_utc_day(now: datetime) -> int:
    """다음 UTC 자정까지 남은 시간 (올림)."""
    remaining = next_utc_midnight(now) - to_utc(now)
    return math.ceil(remaining / timedelta(hours=1))


def is_first_sync_on_mint_day(
    last_updated: datetime, date_of_birth: Optional[datetime], now: datetime
) -> bool:
    if date_of_birth is None:
        return False
    if date_of_birth.date() != now.date():
        return False
    return abs(date_of_birth - last_updated) < NEVER_SYNCED_TOLERANCE


def can_sync(
    last_updated: Optional[Timestamp],
    date_of_birth: Optional[Timestamp],
    now: Timestamp,
) -> SyncDecision:
    """sync 가능 여부. 속도 제한의 유일한 판정 지점.

    - lastUpdated 없음 → 허용
    - lastUpdated의 UTC 날짜 != now의 UTC 날짜 → 허용
    - 민팅 당일 + 민팅 후 sync 없음 → 허용
    - 그 외 → 거부, 다음 UTC 자정까지 남은 시간(올림)
    """
    now_utc = parse_timestamp(now)
    if now_utc is None:
        raise ValueError("now is required")

    last = parse_timestamp(last_updated)
    if last is None:
        return SyncDecision(allowed=True)

    if last.date() != now_utc.date():
        return SyncDecision(allowed=True)

    birth = parse_timestamp(date_of_birth)
    if is_first_sync_on_mint_day(last, birth, now_utc):
        logger.debug("Mint-day first sync allowed: dob=%s", birth)
        return SyncDecision(allowed=True)

    hours = hours_until_next_utc_day(now_utc)
    logger.debug("Sync blocked until next UTC day: %d hours", hours)
    return SyncDecision(allowed=False, hours_until_next=hours)
