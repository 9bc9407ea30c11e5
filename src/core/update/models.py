"""업데이트 파이프라인 상태 머신 (DB 무관)

IDLE → FUNDING_PREPARED → FUNDING_SUBMITTED → FUNDING_CONFIRMED
     → METADATA_UPLOADED → UPDATE_TX_BUILT → UPDATE_TX_SUBMITTED → VERIFIED
어느 단계에서든 FAILED(stage, reason) 가능.

상태는 클라이언트가 단계마다 저장한다 (to_dict / from_dict).
펀딩 서명이 있는 상태는 펀딩 단계로 돌아가지 않는다.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional


class PipelineStage(str, Enum):
    IDLE = "idle"
    FUNDING_PREPARED = "funding_prepared"
    FUNDING_SUBMITTED = "funding_submitted"
    FUNDING_CONFIRMED = "funding_confirmed"
    METADATA_UPLOADED = "metadata_uploaded"
    UPDATE_TX_BUILT = "update_tx_built"
    UPDATE_TX_SUBMITTED = "update_tx_submitted"
    VERIFIED = "verified"
    FAILED = "failed"


STAGE_ORDER: tuple[PipelineStage, ...] = (
    PipelineStage.IDLE,
    PipelineStage.FUNDING_PREPARED,
    PipelineStage.FUNDING_SUBMITTED,
    PipelineStage.FUNDING_CONFIRMED,
    PipelineStage.METADATA_UPLOADED,
    PipelineStage.UPDATE_TX_BUILT,
    PipelineStage.UPDATE_TX_SUBMITTED,
    PipelineStage.VERIFIED,
)


def stage_index(stage: PipelineStage) -> int:
    return STAGE_ORDER.index(stage)


class InvalidTransition(Exception):
    pass


@dataclass(frozen=True)
class PipelineFailure:
    stage: PipelineStage
    reason: str


@dataclass
class PipelineState:
    """한 번의 논리적 sync 진행 기록"""

    wallet_address: str
    asset_address: str
    stage: PipelineStage = PipelineStage.IDLE

    # 펀딩
    funding_transaction: Optional[str] = None
    funding_wallet: Optional[str] = None
    funding_secret_key: Optional[str] = None
    estimated_cost: Optional[str] = None
    funding_signature: Optional[str] = None
    # 전송 전에 기록한 서명된 바이트 (base64). 재개 시 같은 바이트를 다시 보낸다
    signed_funding_transaction: Optional[str] = None
    funding_last_valid_block_height: Optional[int] = None

    # 메타데이터 + 업데이트
    metadata_uri: Optional[str] = None
    update_transaction: Optional[str] = None
    update_signature: Optional[str] = None
    signed_update_transaction: Optional[str] = None
    update_last_valid_block_height: Optional[int] = None

    failure: Optional[PipelineFailure] = None
    history: list[str] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.stage in (PipelineStage.VERIFIED, PipelineStage.FAILED)

    @property
    def resume_stage(self) -> PipelineStage:
        """FAILED 상태에서 재시도 시 이어갈 단계 (실패 직전 단계)."""
        if self.stage != PipelineStage.FAILED or self.failure is None:
            return self.stage
        return self.failure.stage

    def advance(self, stage: PipelineStage) -> None:
        """앞으로만 진행. 같은 단계 재진입 허용 (재시도)."""
        current = self.resume_stage
        if stage == PipelineStage.FAILED:
            raise InvalidTransition("use fail() to enter FAILED")
        if stage_index(stage) < stage_index(current):
            raise InvalidTransition(f"{current.value} → {stage.value}")
        self.stage = stage
        self.failure = None
        self.history.append(stage.value)

    def fail(self, reason: str) -> None:
        stage = self.resume_stage
        self.failure = PipelineFailure(stage=stage, reason=reason)
        self.stage = PipelineStage.FAILED
        self.history.append(f"{PipelineStage.FAILED.value}:{stage.value}")

    def clear_update(self) -> None:
        """반영되지 못하고 만료된 업데이트 트랜잭션을 버린다. 업로드한 URI는 유지."""
        self.update_transaction = None
        self.update_signature = None
        self.signed_update_transaction = None
        self.update_last_valid_block_height = None

    def forget_funding_secret(self) -> None:
        """펀딩 키는 흐름이 끝나면 보관하지 않는다."""
        self.funding_secret_key = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["stage"] = self.stage.value
        if self.failure is not None:
            data["failure"] = {
                "stage": self.failure.stage.value,
                "reason": self.failure.reason,
            }
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PipelineState:
        data = dict(data)
        data["stage"] = PipelineStage(data.get("stage", PipelineStage.IDLE.value))
        failure = data.get("failure")
        if failure:
            data["failure"] = PipelineFailure(
                stage=PipelineStage(failure["stage"]), reason=failure["reason"]
            )
        data["history"] = list(data.get("history") or [])
        return cls(**data)
