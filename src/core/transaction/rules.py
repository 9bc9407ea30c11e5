"""설명 텍스트 정리 + 설명 기반 action 보정 규칙

규칙 테이블은 위에서부터 평가하고 첫 매치가 이긴다.
필드는 summary → type → keyPoints → additionalContext 순서로 검사한다.
"""

from __future__ import annotations

import re
from typing import Any, Callable, Optional

from src.core.transaction.models import DEFAULT_TYPE, Explanation, TxAction

ADDRESS_TAG = re.compile(r"<address>(.*?)</address>")
BULLETS = re.compile(r"[•*]")
HEADING = re.compile(r"^#\s*(.*?)(?:\n|$)")

TextPredicate = Callable[[str], bool]


def _contains_any(*keywords: str) -> TextPredicate:
    return lambda text: any(k in text for k in keywords)


# (predicate(lowercase text), action)
ACTION_OVERRIDE_RULES: tuple[tuple[TextPredicate, TxAction], ...] = (
    (_contains_any("burn"), TxAction.BURNED),
    (_contains_any("claim", "mint"), TxAction.RECEIVE),
)


def clean_text(text: str) -> str:
    """주소 태그 제거, 글머리표 제거, 끝 마침표 제거."""
    text = ADDRESS_TAG.sub(r"\1", text)
    text = BULLETS.sub("", text)
    text = text.strip()
    if text.endswith("."):
        text = text[:-1]
    return text.strip()


def parse_explanation_content(content: Any) -> Optional[Explanation]:
    """설명 API의 content 필드 → Explanation.

    - dict: {"header": {"transactionType"}, "summary", "keyPoints", "additionalContext"}
    - str: "# 제목\\n본문" 마크다운 (구 형식)
    """
    if isinstance(content, dict):
        header = content.get("header") or {}
        tx_type = header.get("transactionType") or DEFAULT_TYPE
        summary = content.get("summary")
        summary = clean_text(summary) if summary else "Transaction details"

        key_points = content.get("keyPoints")
        if isinstance(key_points, list):
            key_points = [clean_text(str(p)) for p in key_points]
        else:
            key_points = None

        context = content.get("additionalContext")
        return Explanation(
            type=str(tx_type),
            summary=summary,
            key_points=key_points,
            additional_context=clean_text(context) if context else None,
        )

    if isinstance(content, str) and content.strip():
        match = HEADING.match(content)
        tx_type = match.group(1).strip() if match else DEFAULT_TYPE
        body = re.sub(r"^#.*\n", "", content, count=1)
        return Explanation(type=tx_type or DEFAULT_TYPE, summary=clean_text(body))

    return None


def _match_action(text: Optional[str]) -> Optional[TxAction]:
    if not text:
        return None
    lowered = text.lower()
    for predicate, action in ACTION_OVERRIDE_RULES:
        if predicate(lowered):
            return action
    return None


def action_from_explanation(
    initial: TxAction, explanation: Explanation
) -> TxAction:
    """설명 텍스트가 휴리스틱 결과를 덮어쓴다. 매치 없으면 initial."""
    fields = (
        explanation.summary,
        explanation.type,
        " ".join(explanation.key_points) if explanation.key_points else None,
        explanation.additional_context,
    )
    for text in fields:
        action = _match_action(text)
        if action is not None:
            return action
    return initial
