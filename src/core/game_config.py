"""게임 설정: 레벨/진화 임계값 테이블 (DB 무관 순수 Python)

프로세스 시작 시 한 번 로드되어 읽기 전용으로 주입된다.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_LEVEL_THRESHOLDS: tuple[int, ...] = (
    0, 100, 250, 450, 700, 1000, 1350, 1750, 2200, 2700, 3300,
)
DEFAULT_EVOLUTION_THRESHOLDS: tuple[int, ...] = (0, 1, 3, 6, 9)


def _validate_thresholds(name: str, values: tuple[int, ...]) -> None:
    """첫 값 0, 엄격 증가 확인. 위반 시 ValueError."""
    if not values:
        raise ValueError(f"{name} must not be empty")
    if values[0] != 0:
        raise ValueError(f"{name}[0] must be 0, got {values[0]}")
    for prev, cur in zip(values, values[1:]):
        if cur <= prev:
            raise ValueError(f"{name} must be strictly increasing: {prev} -> {cur}")


@dataclass(frozen=True)
class GameConfig:
    """레벨/진화 임계값과 동행 이미지 테이블

    level_thresholds[i]: 레벨 i에 필요한 누적 XP
    evolution_thresholds[i]: 진화 단계 i에 필요한 레벨
    companion_images[type][evolution]: 이미지 경로
    """

    level_thresholds: tuple[int, ...] = DEFAULT_LEVEL_THRESHOLDS
    evolution_thresholds: tuple[int, ...] = DEFAULT_EVOLUTION_THRESHOLDS
    companion_images: dict[str, tuple[str, ...]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        _validate_thresholds("levelThresholds", self.level_thresholds)
        _validate_thresholds("evolutionThresholds", self.evolution_thresholds)

    @property
    def max_level(self) -> int:
        return len(self.level_thresholds) - 1

    @property
    def max_evolution(self) -> int:
        return len(self.evolution_thresholds) - 1

    @classmethod
    def from_dict(cls, raw: dict) -> GameConfig:
        """/game-config 응답과 같은 camelCase dict에서 생성."""
        images = {
            str(name): tuple(str(path) for path in paths)
            for name, paths in (raw.get("companionImages") or {}).items()
        }
        return cls(
            level_thresholds=tuple(
                int(v) for v in raw.get("levelThresholds", DEFAULT_LEVEL_THRESHOLDS)
            ),
            evolution_thresholds=tuple(
                int(v)
                for v in raw.get("evolutionThresholds", DEFAULT_EVOLUTION_THRESHOLDS)
            ),
            companion_images=images,
        )

    def to_dict(self) -> dict:
        return {
            "levelThresholds": list(self.level_thresholds),
            "evolutionThresholds": list(self.evolution_thresholds),
            "companionImages": {
                name: list(paths) for name, paths in self.companion_images.items()
            },
        }


def load_game_config(path: str | Path) -> GameConfig:
    """game_config.json 로드. 테이블이 잘못되면 ValueError."""
    path = Path(path)
    with path.open("r", encoding="utf-8") as f:
        raw: dict = json.load(f)

    config = GameConfig.from_dict(raw)
    logger.info(
        "Loaded game config from %s: max_level=%d, max_evolution=%d, companions=%d",
        path,
        config.max_level,
        config.max_evolution,
        len(config.companion_images),
    )
    return config
