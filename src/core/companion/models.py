"""동행 도메인 모델 (DB 무관)

NFT 메타데이터에 저장되는 동행 상태의 타입 레코드.
trait_type 리스트 변환은 metadata.py의 encode/decode에서만 한다.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class Mood(str, Enum):
    HAPPY = "Happy"
    SAD = "Sad"
    ERROR = "ERROR"


class TraitType:
    """예약 trait_type 문자열"""

    EXPERIENCE = "Experience"
    LEVEL = "Level"
    EVOLUTION = "Evolution"
    MOOD = "Mood"
    DATE_OF_BIRTH = "DateOfBirth"
    LAST_UPDATED = "LastUpdated"
    XP_FOR_NEXT_LEVEL = "XpForNextLevel"


# 인코딩 순서 = 메타데이터 attributes 순서
RESERVED_TRAITS: tuple[str, ...] = (
    TraitType.EXPERIENCE,
    TraitType.LEVEL,
    TraitType.EVOLUTION,
    TraitType.MOOD,
    TraitType.DATE_OF_BIRTH,
    TraitType.LAST_UPDATED,
    TraitType.XP_FOR_NEXT_LEVEL,
)


@dataclass(frozen=True)
class Trait:
    """예약되지 않은 자유 trait (Toys, Background 등)"""

    trait_type: str
    value: Any


@dataclass
class Companion:
    """동행 상태

    level / evolution은 experience에서 파생된다 (ProgressionEngine).
    last_updated가 None이거나 date_of_birth와 같으면 민팅 후 sync 없음.
    """

    name: str
    description: str = ""
    image: str = ""
    date_of_birth: str = ""

    experience: int = 0
    level: int = 0
    evolution: int = 0
    mood: str = Mood.HAPPY.value
    last_updated: Optional[str] = None
    xp_for_next_level: Optional[int] = None

    # 명시된 종류 (fluffy / sparky / ember). 없으면 이름/설명에서 추론
    companion_type: Optional[str] = None

    custom_traits: list[Trait] = field(default_factory=list)
