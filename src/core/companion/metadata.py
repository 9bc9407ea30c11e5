"""동행 ↔ NFT 메타데이터 변환

직렬화 경계는 이 모듈 하나:
- encode_attributes: Companion → [{trait_type, value}, ...]
- decode_attributes: [{trait_type, value}, ...] → 예약 필드 + 자유 trait

불변식: 예약 trait_type은 인코딩 결과에 정확히 한 번씩 나온다.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Iterable, Optional

from src.core.companion.models import RESERVED_TRAITS, Companion, Trait, TraitType
from src.core.game_config import GameConfig
from src.core.progression import ProgressionEngine
from src.core.timestamps import isoformat

logger = logging.getLogger(__name__)

DEFAULT_COMPANION_TYPE = "fluffy"

# 이름/설명 키워드 → 동행 종류. 위에서부터 첫 매치
COMPANION_TYPE_KEYWORDS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("sparky", "electrifying"), "sparky"),
    (("fluffy",), "fluffy"),
    (("ember",), "ember"),
)


def _to_int(trait_type: str, value: Any) -> int:
    try:
        return int(str(value).strip())
    except ValueError as e:
        raise ValueError(f"Trait {trait_type} is not an integer: {value!r}") from e


def encode_attributes(companion: Companion) -> list[dict[str, Any]]:
    """예약 trait 7개 + 자유 trait (예약 키는 걸러냄)."""
    xp_next = companion.xp_for_next_level
    attributes: list[dict[str, Any]] = [
        {"trait_type": TraitType.EXPERIENCE, "value": str(companion.experience)},
        {"trait_type": TraitType.LEVEL, "value": str(companion.level)},
        {"trait_type": TraitType.EVOLUTION, "value": str(companion.evolution)},
        {"trait_type": TraitType.MOOD, "value": companion.mood},
        {"trait_type": TraitType.DATE_OF_BIRTH, "value": companion.date_of_birth},
        {
            "trait_type": TraitType.LAST_UPDATED,
            "value": companion.last_updated or companion.date_of_birth,
        },
        # 최대 레벨은 "0" (최대 레벨이 아니면 항상 양수)
        {
            "trait_type": TraitType.XP_FOR_NEXT_LEVEL,
            "value": str(xp_next if xp_next is not None else 0),
        },
    ]
    attributes.extend(
        {"trait_type": t.trait_type, "value": t.value}
        for t in companion.custom_traits
        if t.trait_type not in RESERVED_TRAITS
    )
    return attributes


def decode_attributes(
    attributes: Optional[Iterable[dict[str, Any]]],
) -> tuple[dict[str, Any], list[Trait]]:
    """attributes 리스트 → (예약 필드 dict, 자유 trait 리스트).

    예약 키는 첫 항목만 사용. 알 수 없는 trait는 순서 그대로 통과.
    예약 필드 dict 키는 Companion 필드 이름.
    """
    reserved: dict[str, Any] = {}
    custom: list[Trait] = []

    for attr in attributes or []:
        trait_type = attr.get("trait_type")
        if not isinstance(trait_type, str):
            continue
        value = attr.get("value")

        if trait_type not in RESERVED_TRAITS:
            custom.append(Trait(trait_type=trait_type, value=value))
            continue

        if trait_type in reserved:
            logger.warning("Duplicate reserved trait ignored: %s", trait_type)
            continue
        reserved[trait_type] = value

    fields: dict[str, Any] = {}
    if TraitType.EXPERIENCE in reserved:
        fields["experience"] = _to_int(
            TraitType.EXPERIENCE, reserved[TraitType.EXPERIENCE]
        )
    if TraitType.LEVEL in reserved:
        fields["level"] = _to_int(TraitType.LEVEL, reserved[TraitType.LEVEL])
    if TraitType.EVOLUTION in reserved:
        fields["evolution"] = _to_int(
            TraitType.EVOLUTION, reserved[TraitType.EVOLUTION]
        )
    if TraitType.MOOD in reserved:
        fields["mood"] = str(reserved[TraitType.MOOD])
    if TraitType.DATE_OF_BIRTH in reserved:
        fields["date_of_birth"] = str(reserved[TraitType.DATE_OF_BIRTH])
    if TraitType.LAST_UPDATED in reserved:
        fields["last_updated"] = str(reserved[TraitType.LAST_UPDATED])
    if TraitType.XP_FOR_NEXT_LEVEL in reserved:
        xp_next = _to_int(
            TraitType.XP_FOR_NEXT_LEVEL, reserved[TraitType.XP_FOR_NEXT_LEVEL]
        )
        fields["xp_for_next_level"] = xp_next if xp_next > 0 else None

    return fields, custom


def companion_from_metadata(document: dict[str, Any]) -> Companion:
    """메타데이터 JSON 문서 → Companion."""
    fields, custom = decode_attributes(document.get("attributes"))
    return Companion(
        name=str(document.get("name", "")),
        description=str(document.get("description", "")),
        image=str(document.get("image", "")),
        custom_traits=custom,
        **fields,
    )


def companion_from_request(data: dict[str, Any]) -> Companion:
    """클라이언트 companionData (camelCase) → Companion.

    최상위 필드가 attributes의 예약 trait보다 우선한다.
    """
    if not data.get("name"):
        raise ValueError("companionData.name is required")

    fields, custom = decode_attributes(data.get("attributes"))

    top_level = {
        "experience": "experience",
        "level": "level",
        "evolution": "evolution",
        "mood": "mood",
        "dateOfBirth": "date_of_birth",
        "lastUpdated": "last_updated",
    }
    for key, attr in top_level.items():
        if data.get(key) is None:
            continue
        value = data[key]
        if attr in ("experience", "level", "evolution"):
            value = _to_int(key, value)
        else:
            value = str(value)
        fields[attr] = value

    if fields.get("experience", 0) < 0:
        raise ValueError("companionData.experience must be non-negative")

    return Companion(
        name=str(data["name"]),
        description=str(data.get("description", "")),
        image=str(data.get("image", "")),
        companion_type=data.get("companionType"),
        custom_traits=custom,
        **fields,
    )


def resolve_companion_type(companion: Companion, config: GameConfig) -> str:
    """이미지 테이블 조회용 동행 종류."""
    if companion.companion_type and companion.companion_type in config.companion_images:
        return companion.companion_type

    haystack = f"{companion.name} {companion.description}".lower()
    for keywords, companion_type in COMPANION_TYPE_KEYWORDS:
        if any(k in haystack for k in keywords):
            return companion_type
    return DEFAULT_COMPANION_TYPE


def image_for(
    companion_type: str, evolution: int, config: GameConfig
) -> Optional[str]:
    """(종류, 진화 단계) → 이미지. 테이블에 없으면 None."""
    images = config.companion_images.get(companion_type)
    if not images:
        return None
    return images[min(evolution, len(images) - 1)]


def apply_progression(
    companion: Companion,
    engine: ProgressionEngine,
    now: datetime,
) -> Companion:
    """experience에서 level/evolution/xp_for_next_level/image를 다시 계산하고
    last_updated를 now로 갱신한 사본."""
    result = engine.evaluate(companion.experience)
    companion_type = resolve_companion_type(companion, engine.config)
    image = image_for(companion_type, result.evolution, engine.config)

    return replace(
        companion,
        level=result.level,
        evolution=result.evolution,
        xp_for_next_level=result.xp_for_next_level,
        image=image or companion.image,
        companion_type=companion_type,
        last_updated=isoformat(now),
    )


def build_metadata_document(companion: Companion) -> dict[str, Any]:
    """스토리지에 올릴 메타데이터 문서."""
    return {
        "name": companion.name,
        "description": companion.description,
        "image": companion.image,
        "attributes": encode_attributes(companion),
    }
