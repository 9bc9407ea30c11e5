"""Companion API endpoints."""

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from src.api.schemas import (
    CheckCompanionResponse,
    CompanionResponse,
    ExperienceSyncResponse,
    FundingQuoteResponse,
    FundingStatusRequest,
    FundingStatusResponse,
    GameConfigResponse,
    PreparedUpdateResponse,
    TransactionDetailsResponse,
    TransactionsResponse,
    UpdateCompanionRequest,
    UploadStatusRequest,
    UploadStatusResponse,
    VerifyUpdateRequest,
    VerifyUpdateResponse,
)
from src.config import settings
from src.core.game_config import GameConfig
from src.core.logging import get_logger
from src.core.timestamps import isoformat, utc_now
from src.db.database import get_db
from src.services.classifier_service import ClassifierService
from src.services.companion_service import CompanionService
from src.services.experience_service import ExperienceService
from src.services.update_service import UpdateService

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["companion"])


def get_experience_service(request: Request) -> ExperienceService:
    """ExperienceService 인스턴스 반환 (의존성 주입용)"""
    service: ExperienceService = request.app.state.experience_service
    return service


def get_classifier_service(request: Request) -> ClassifierService:
    service: ClassifierService = request.app.state.classifier_service
    return service


def get_game_config(request: Request) -> GameConfig:
    config: GameConfig = request.app.state.game_config
    return config


def get_companion_service(request: Request) -> CompanionService:
    state = request.app.state
    return CompanionService(
        chain=state.chain_client,
        storage=state.storage_service,
        collection_address=settings.COLLECTION_ADDRESS,
    )


def get_update_service(
    request: Request, db: Session = Depends(get_db)
) -> UpdateService:
    """요청마다 DB 세션을 받아 UpdateService 생성. 나머지는 프로세스 공유."""
    state = request.app.state
    return UpdateService(
        db=db,
        event_bus=state.event_bus,
        chain=state.chain_client,
        storage=state.storage_service,
        progression=state.progression,
        authority=state.authority,
        collection_address=settings.COLLECTION_ADDRESS,
        metadata_size=settings.METADATA_SIZE_ESTIMATE,
        rent_margin=settings.RENT_MARGIN_LAMPORTS,
        min_funded=settings.MIN_FUNDED_LAMPORTS,
        recheck_delay=settings.FUNDING_RECHECK_DELAY_SECONDS,
    )


def _require(message: str, *values: Any) -> None:
    if any(value is None or value == "" for value in values):
        raise HTTPException(status_code=400, detail=message)


# === 경험치 ===


@router.get(
    "/experience-sync",
    response_model=ExperienceSyncResponse,
    response_model_exclude_none=True,
)
def experience_sync(
    wallet: Optional[str] = None,
    last_updated: Optional[str] = Query(None, alias="lastUpdated"),
    date_of_birth: Optional[str] = Query(None, alias="dateOfBirth"),
    service: ExperienceService = Depends(get_experience_service),
) -> dict[str, Any]:
    """sync 가능 여부와 이번 sync의 XP 증분"""
    _require("Wallet address is required", wallet)

    now = utc_now()
    try:
        quote = service.quote(wallet, last_updated, date_of_birth, now=now)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not quote.can_sync:
        return {
            "experience_points": 0,
            "can_sync": False,
            "hours_until_next_sync": quote.hours_until_next_sync,
            "message": quote.message,
        }
    return {
        "experience_points": quote.experience_points,
        "can_sync": True,
        "transaction_count": quote.transaction_count,
        "last_update_time": isoformat(now),
        "current_time": isoformat(now),
    }


@router.get("/game-config", response_model=GameConfigResponse)
def game_config(config: GameConfig = Depends(get_game_config)) -> dict[str, Any]:
    return config.to_dict()


# === 동행 조회 ===


@router.get("/check-companion", response_model=CheckCompanionResponse)
def check_companion(
    wallet_address: Optional[str] = Query(None, alias="walletAddress"),
    wallet: Optional[str] = None,
    service: CompanionService = Depends(get_companion_service),
) -> dict[str, Any]:
    """지갑이 동행 컬렉션 에셋을 가지고 있는지"""
    wallet_address = wallet_address or wallet
    _require("Wallet address is required", wallet_address)
    return service.check_companion(wallet_address)


@router.get("/get-companion", response_model=CompanionResponse)
def get_companion(
    wallet_address: Optional[str] = Query(None, alias="walletAddress"),
    service: CompanionService = Depends(get_companion_service),
) -> dict[str, Any]:
    """지갑의 동행과 게시된 메타데이터"""
    _require("Wallet address is required", wallet_address)
    return service.get_companion(wallet_address).to_response()


# === 트랜잭션 ===


@router.get("/transactions", response_model=TransactionsResponse)
def transactions(
    wallet: Optional[str] = None,
    service: ExperienceService = Depends(get_experience_service),
) -> dict[str, Any]:
    """최근 서명 목록"""
    _require("Wallet address is required", wallet)
    signatures = service.recent_transactions(wallet)
    return {"transactions": [info.to_response() for info in signatures]}


@router.get("/transaction-details", response_model=TransactionDetailsResponse)
def transaction_details(
    signature: Optional[str] = None,
    wallet: Optional[str] = None,
    classifier: ClassifierService = Depends(get_classifier_service),
) -> dict[str, Any]:
    """트랜잭션 하나의 분류 + 설명"""
    _require("Transaction signature and wallet address are required", signature, wallet)
    return classifier.classify(signature, wallet).to_response()


# === 업데이트 흐름 ===


@router.get("/update-companion", response_model=FundingQuoteResponse)
def prepare_funding(
    wallet_address: Optional[str] = Query(None, alias="walletAddress"),
    service: UpdateService = Depends(get_update_service),
) -> dict[str, Any]:
    """A단계: 서명되지 않은 펀딩 이체"""
    _require("Wallet address is required", wallet_address)
    return service.prepare_funding(wallet_address).to_response()


@router.post("/update-companion", response_model=PreparedUpdateResponse)
def prepare_update(
    body: UpdateCompanionRequest,
    service: UpdateService = Depends(get_update_service),
) -> dict[str, Any]:
    """B단계: 메타데이터 업로드 + authority 부분 서명 업데이트 트랜잭션"""
    _require(
        "assetAddress, companionData, payerPublicKey, serverSecretKey, "
        "and fundingSignature are required",
        body.asset_address,
        body.companion_data,
        body.payer_public_key,
        body.server_secret_key,
        body.funding_signature,
    )
    prepared = service.prepare_update(
        asset_address=body.asset_address,
        companion_data=body.companion_data,
        payer_address=body.payer_public_key,
        funding_secret_key=body.server_secret_key,
        funding_signature=body.funding_signature,
    )
    return prepared.to_response()


@router.put("/update-companion", response_model=VerifyUpdateResponse)
def verify_update(
    body: VerifyUpdateRequest,
    service: UpdateService = Depends(get_update_service),
) -> dict[str, Any]:
    """C단계: 업데이트 확정 검증"""
    _require(
        "Transaction signature and asset address are required",
        body.signature,
        body.asset_address,
    )
    signature = service.verify_update(
        body.signature, body.asset_address, body.funding_signature
    )
    return {"asset_address": body.asset_address, "signature": signature}


@router.post(
    "/check-funding-status",
    response_model=FundingStatusResponse,
    response_model_exclude_none=True,
)
def check_funding_status(
    body: FundingStatusRequest,
    service: UpdateService = Depends(get_update_service),
) -> dict[str, Any]:
    _require("Missing required parameters", body.funding_signature, body.server_wallet)
    return service.check_funding_status(
        body.funding_signature, body.server_wallet
    ).to_response()


@router.post("/check-upload-status", response_model=UploadStatusResponse)
def check_upload_status(
    body: UploadStatusRequest,
    service: UpdateService = Depends(get_update_service),
) -> dict[str, Any]:
    _require("Missing metadata URI", body.metadata_uri)
    confirmed, message = service.check_upload_status(body.metadata_uri)
    return {"confirmed": confirmed, "message": message}
