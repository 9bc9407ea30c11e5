"""API request/response schemas.

Wire format is camelCase; Python attributes are snake_case.
Request fields are all optional so that routes can answer missing
parameters with a 400 and a readable message.
"""

from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# === Request Schemas ===


class UpdateCompanionRequest(CamelModel):
    """B단계: 메타데이터 업로드 + 업데이트 트랜잭션 요청"""

    asset_address: Optional[str] = None
    companion_data: Optional[dict[str, Any]] = None
    payer_public_key: Optional[str] = None
    server_secret_key: Optional[str] = None
    funding_signature: Optional[str] = None


class VerifyUpdateRequest(CamelModel):
    """C단계: 업데이트 검증 요청. 서명은 base58, 바이트 배열, "1,2,3" 모두 허용."""

    signature: Optional[Union[list[int], str]] = None
    asset_address: Optional[str] = None
    funding_signature: Optional[str] = None


class FundingStatusRequest(CamelModel):
    funding_signature: Optional[str] = None
    server_wallet: Optional[str] = None


class UploadStatusRequest(CamelModel):
    metadata_uri: Optional[str] = None


# === Response Schemas ===


class ExperienceSyncResponse(CamelModel):
    """sync 가능 여부 + XP 견적"""

    success: bool = True
    experience_points: int
    can_sync: bool
    hours_until_next_sync: Optional[int] = None
    message: Optional[str] = None
    transaction_count: Optional[int] = None
    last_update_time: Optional[str] = None
    current_time: Optional[str] = None


class GameConfigResponse(CamelModel):
    level_thresholds: list[int]
    evolution_thresholds: list[int]
    companion_images: dict[str, list[str]]


class SignatureItem(CamelModel):
    signature: str
    slot: int
    block_time: Optional[int] = None
    err: Optional[Any] = None


class TransactionsResponse(CamelModel):
    transactions: list[SignatureItem]


class TransactionDetailsResponse(CamelModel):
    """분류 결과. "Unknown" type은 "Generic"으로 표시된다."""

    type: str
    summary: str
    key_points: Optional[list[str]] = None
    additional_context: Optional[str] = None
    action: str


class FundingQuoteResponse(CamelModel):
    success: bool = True
    funding_transaction: str
    estimated_cost: str
    server_wallet: str
    server_secret_key: str
    last_valid_block_height: int


class PreparedUpdateResponse(CamelModel):
    success: bool = True
    transaction: str
    metadata_uri: str
    last_valid_block_height: int


class VerifyUpdateResponse(CamelModel):
    success: bool = True
    asset_address: str
    signature: str


class FundingStatusResponse(CamelModel):
    success: bool = True
    funded: bool
    balance: Optional[float] = None
    message: Optional[str] = None


class UploadStatusResponse(CamelModel):
    success: bool = True
    confirmed: bool
    message: str


class CheckCompanionResponse(CamelModel):
    has_companion: bool
    companion_count: int


class CompanionResponse(CamelModel):
    success: bool = True
    asset_address: str
    metadata_uri: str
    companion: dict[str, Any]
