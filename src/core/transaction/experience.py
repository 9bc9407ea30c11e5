"""분류된 트랜잭션 묶음 → 이번 sync의 XP 증분

- 기본: 트랜잭션당 +5
- 다양성: 묶음 안에서 처음 보는 type이면 +3
- 카테고리: CATEGORY_RULES 첫 매치 (NFT +10, swap +5, stake +8, transfer +1)
- 방향: 보냄 +3, 아니면 받음 +1
- 합계는 [0, MAX_XP_PER_SYNC]로 자른다 (sync 호출 단위 상한)
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable

from src.core.transaction.models import ClassifiedTransaction, TxAction

logger = logging.getLogger(__name__)

BASE_XP = 5
DIVERSITY_BONUS = 3
SEND_BONUS = 3
RECEIVE_BONUS = 1
MAX_XP_PER_SYNC = 100

# (type 소문자, 설명 텍스트 소문자) → 매치 여부
CategoryPredicate = Callable[[str, str], bool]


def _category(types: tuple[str, ...], phrases: tuple[str, ...]) -> CategoryPredicate:
    return lambda tx_type, text: tx_type in types or any(p in text for p in phrases)


CATEGORY_RULES: tuple[tuple[str, CategoryPredicate, int], ...] = (
    ("nft", _category(("nft", "nft mint"), ("nft mint", "nft purchase")), 10),
    ("swap", _category(("swap",), ("swap",)), 5),
    ("stake", _category(("stake", "unstake"), ("stake",)), 8),
    ("transfer", _category(("token transfer",), ("transfer",)), 1),
)


def category_bonus(tx: ClassifiedTransaction) -> int:
    tx_type = (tx.type or "").lower()
    text = tx.explanation_text
    for _name, predicate, bonus in CATEGORY_RULES:
        if predicate(tx_type, text):
            return bonus
    return 0


def direction_bonus(tx: ClassifiedTransaction) -> int:
    text = tx.explanation_text
    if tx.action == TxAction.SEND or "sent" in text or "transferred to" in text:
        return SEND_BONUS
    if tx.action == TxAction.RECEIVE or "received" in text or "transferred from" in text:
        return RECEIVE_BONUS
    return 0


def transaction_xp(tx: ClassifiedTransaction, first_of_type: bool) -> int:
    """트랜잭션 하나의 XP (상한 적용 전)."""
    xp = BASE_XP
    if first_of_type:
        xp += DIVERSITY_BONUS
    return xp + category_bonus(tx) + direction_bonus(tx)


def compute_xp(transactions: Iterable[ClassifiedTransaction]) -> int:
    """묶음 XP 합계. 순서는 호출자가 고정한다 (체인 반환 순서)."""
    seen_types: set[str] = set()
    total = 0
    count = 0
    for tx in transactions:
        first_of_type = bool(tx.type) and tx.type not in seen_types
        if first_of_type:
            seen_types.add(tx.type)
        total += transaction_xp(tx, first_of_type)
        count += 1

    capped = max(0, min(total, MAX_XP_PER_SYNC))
    logger.debug(
        "XP computed: transactions=%d, types=%d, raw=%d, capped=%d",
        count,
        len(seen_types),
        total,
        capped,
    )
    return capped
