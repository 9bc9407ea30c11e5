"""Companion Sync Core"""
__version__ = "0.1.0"

from src.core.errors import (
    AlreadyAppliedError,
    ChainError,
    CompanionError,
    FundingError,
    InsufficientFundsError,
    NotFoundError,
    StorageError,
    SyncLimitError,
    ValidationError,
    VerificationError,
)
from src.core.game_config import GameConfig, load_game_config
from src.core.progression import ProgressionEngine, ProgressionResult
from src.core.sync_gate import SyncDecision, can_sync

__all__ = [
    "CompanionError",
    "ValidationError",
    "NotFoundError",
    "ChainError",
    "StorageError",
    "FundingError",
    "InsufficientFundsError",
    "VerificationError",
    "AlreadyAppliedError",
    "SyncLimitError",
    "GameConfig",
    "load_game_config",
    "ProgressionEngine",
    "ProgressionResult",
    "SyncDecision",
    "can_sync",
]
