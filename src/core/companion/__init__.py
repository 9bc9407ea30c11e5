"""동행 Core 패키지

DB 무관 순수 Python 로직.
"""

from src.core.companion.metadata import (
    apply_progression,
    build_metadata_document,
    companion_from_metadata,
    companion_from_request,
    decode_attributes,
    encode_attributes,
    image_for,
    resolve_companion_type,
)
from src.core.companion.models import (
    RESERVED_TRAITS,
    Companion,
    Mood,
    Trait,
    TraitType,
)

__all__ = [
    "Companion",
    "Mood",
    "Trait",
    "TraitType",
    "RESERVED_TRAITS",
    "encode_attributes",
    "decode_attributes",
    "companion_from_metadata",
    "companion_from_request",
    "resolve_companion_type",
    "image_for",
    "apply_progression",
    "build_metadata_document",
]
