"""경험치 → 레벨 → 진화 단계 매핑 (순수 Python)

level(xp) = max i : level_thresholds[i] <= xp
evolution(level) = max i : evolution_thresholds[i] <= level
"""

from __future__ import annotations

import bisect
from dataclasses import dataclass
from typing import Optional

from src.core.game_config import GameConfig


@dataclass(frozen=True)
class ProgressionResult:
    """sync 후 동행 진행 상태

    xp_for_next_level: 최대 레벨이면 None
    """

    experience: int
    level: int
    evolution: int
    xp_for_next_level: Optional[int]

    @property
    def is_max_level(self) -> bool:
        return self.xp_for_next_level is None


class ProgressionEngine:
    """GameConfig 임계값 테이블 기반 진행 계산"""

    def __init__(self, config: GameConfig) -> None:
        self._config = config

    @property
    def config(self) -> GameConfig:
        return self._config

    def level_for(self, experience: int) -> int:
        """누적 XP의 레벨. 테이블 첫 값이 0이므로 음수가 아니면 항상 >= 0."""
        if experience < 0:
            raise ValueError(f"experience must be non-negative, got {experience}")
        return bisect.bisect_right(self._config.level_thresholds, experience) - 1

    def evolution_for(self, level: int) -> int:
        if level < 0:
            raise ValueError(f"level must be non-negative, got {level}")
        return bisect.bisect_right(self._config.evolution_thresholds, level) - 1

    def xp_for_next_level(self, level: int, experience: int) -> Optional[int]:
        thresholds = self._config.level_thresholds
        if level + 1 >= len(thresholds):
            return None
        return thresholds[level + 1] - experience

    def evaluate(self, experience: int) -> ProgressionResult:
        """누적 XP 하나로 전체 진행 상태 계산."""
        level = self.level_for(experience)
        return ProgressionResult(
            experience=experience,
            level=level,
            evolution=self.evolution_for(level),
            xp_for_next_level=self.xp_for_next_level(level, experience),
        )

    def apply(self, current_xp: int, xp_delta: int) -> ProgressionResult:
        """현재 XP에 sync 증분을 더한다. 감소 경로는 없다."""
        if current_xp < 0:
            raise ValueError(f"current_xp must be non-negative, got {current_xp}")
        if xp_delta < 0:
            raise ValueError(f"xp_delta must be non-negative, got {xp_delta}")
        return self.evaluate(current_xp + xp_delta)
