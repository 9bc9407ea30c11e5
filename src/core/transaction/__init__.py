"""트랜잭션 분류 + XP 계산 Core 패키지

DB/RPC 무관 순수 Python 로직.
"""

from src.core.transaction.experience import (
    CATEGORY_RULES,
    MAX_XP_PER_SYNC,
    compute_xp,
    transaction_xp,
)
from src.core.transaction.heuristics import detect_burn, determine_initial_action
from src.core.transaction.models import (
    ClassifiedTransaction,
    ExperienceQuote,
    Explanation,
    SignatureInfo,
    TxAction,
    display_type,
)
from src.core.transaction.rules import (
    ACTION_OVERRIDE_RULES,
    action_from_explanation,
    clean_text,
    parse_explanation_content,
)

__all__ = [
    "TxAction",
    "Explanation",
    "ClassifiedTransaction",
    "SignatureInfo",
    "ExperienceQuote",
    "display_type",
    "determine_initial_action",
    "detect_burn",
    "ACTION_OVERRIDE_RULES",
    "action_from_explanation",
    "clean_text",
    "parse_explanation_content",
    "CATEGORY_RULES",
    "MAX_XP_PER_SYNC",
    "compute_xp",
    "transaction_xp",
]
