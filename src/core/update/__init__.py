"""업데이트 파이프라인 Core 패키지"""

from src.core.update.models import (
    STAGE_ORDER,
    InvalidTransition,
    PipelineFailure,
    PipelineStage,
    PipelineState,
)

__all__ = [
    "PipelineStage",
    "PipelineState",
    "PipelineFailure",
    "InvalidTransition",
    "STAGE_ORDER",
]
