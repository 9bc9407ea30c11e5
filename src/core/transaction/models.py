"""트랜잭션 분류 도메인 모델 (DB 무관)"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class TxAction(str, Enum):
    SEND = "SEND"
    RECEIVE = "RECEIVE"
    BURNED = "BURNED"
    OTHER = "OTHER"


DEFAULT_TYPE = "Transaction"
DEFAULT_SUMMARY = "See advanced details for more information"
UNKNOWN_TYPE = "Unknown"
GENERIC_LABEL = "Generic"


def display_type(tx_type: str) -> str:
    """"Unknown"은 화면 표시용 "Generic"으로 바꾼다."""
    return GENERIC_LABEL if tx_type == UNKNOWN_TYPE else tx_type


@dataclass(frozen=True)
class Explanation:
    """설명 서비스 응답 (정리된 텍스트)"""

    type: str = DEFAULT_TYPE
    summary: str = DEFAULT_SUMMARY
    key_points: Optional[list[str]] = None
    additional_context: Optional[str] = None


@dataclass(frozen=True)
class ClassifiedTransaction:
    signature: str
    action: TxAction
    type: str = DEFAULT_TYPE
    summary: str = DEFAULT_SUMMARY
    key_points: Optional[list[str]] = None
    additional_context: Optional[str] = None

    @property
    def explanation_text(self) -> str:
        """XP 키워드 판정용 설명 텍스트 (소문자)."""
        parts = [self.summary]
        parts.extend(self.key_points or [])
        if self.additional_context:
            parts.append(self.additional_context)
        return " ".join(p for p in parts if p).lower()

    def to_response(self) -> dict[str, Any]:
        """/transaction-details 응답 형식"""
        return {
            "type": display_type(self.type),
            "summary": self.summary.rstrip(".") if self.summary else self.summary,
            "keyPoints": self.key_points,
            "additionalContext": self.additional_context,
            "action": self.action.value,
        }

    @classmethod
    def unknown(cls, signature: str) -> ClassifiedTransaction:
        """분류 자체가 실패한 트랜잭션."""
        return cls(signature=signature, action=TxAction.OTHER, type=UNKNOWN_TYPE)


@dataclass(frozen=True)
class SignatureInfo:
    """getSignaturesForAddress 항목"""

    signature: str
    slot: int = 0
    block_time: Optional[int] = None
    err: Optional[Any] = None

    def to_response(self) -> dict[str, Any]:
        return {
            "signature": self.signature,
            "slot": self.slot,
            "blockTime": self.block_time,
            "err": self.err,
        }


@dataclass
class ExperienceQuote:
    """sync 가능 여부 + 이번 sync의 XP 증분"""

    can_sync: bool
    experience_points: int = 0
    hours_until_next_sync: Optional[int] = None
    message: Optional[str] = None
    transaction_count: Optional[int] = None
    classified: list[ClassifiedTransaction] = field(default_factory=list)
