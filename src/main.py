"""FastAPI application entrypoint."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from solders.keypair import Keypair

from src.api.companion import router as companion_router
from src.api.health import router as health_router
from src.config import settings
from src.core.errors import CompanionError, ValidationError
from src.core.event_bus import EventBus
from src.core.game_config import load_game_config
from src.core.logging import get_logger, setup_logging
from src.core.progression import ProgressionEngine
from src.db.database import engine as db_engine
from src.db.models import Base
from src.services.chain import ChainClient
from src.services.classifier_service import ClassifierService
from src.services.experience_service import ExperienceService
from src.services.explainer import get_explainer
from src.services.storage import IrysNode, StorageService, build_uploaders
from src.services.update_service import load_keypair

setup_logging(settings.LOG_LEVEL)
logger = get_logger(__name__)


def _load_authority() -> Optional[Keypair]:
    """서비스 update authority. 없으면 업데이트 준비 요청만 실패한다."""
    if not settings.AUTHORITY_PRIVATE_KEY:
        logger.warning("AUTHORITY_PRIVATE_KEY not set, companion updates are disabled")
        return None
    try:
        authority = load_keypair(settings.AUTHORITY_PRIVATE_KEY, "AUTHORITY_PRIVATE_KEY")
    except ValidationError as e:
        logger.error("%s, companion updates are disabled", e.message)
        return None
    logger.info("Update authority loaded: %s", authority.pubkey())
    return authority


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup and shutdown events."""
    # DB 테이블 생성
    logger.info("Creating database tables...")
    Base.metadata.create_all(bind=db_engine)
    logger.info("Database tables created.")

    # 게임 설정
    game_config = load_game_config(settings.GAME_CONFIG_PATH)
    app.state.game_config = game_config
    app.state.progression = ProgressionEngine(game_config)

    # 체인 클라이언트 (프로세스당 하나)
    logger.info("Initializing ChainClient...")
    chain_client = ChainClient(
        settings.SOLANA_RPC_URL,
        timeout=settings.RPC_TIMEOUT_SECONDS,
        max_attempts=settings.RPC_MAX_ATTEMPTS,
    )
    app.state.chain_client = chain_client
    app.state.authority = _load_authority()

    # 스토리지
    # 게이트웨이(arweave.net)는 리다이렉트로 응답한다
    http = httpx.Client(timeout=settings.RPC_TIMEOUT_SECONDS, follow_redirects=True)
    primary, fallback = build_uploaders(
        settings.storage_node_url, settings.STORAGE_UPLOADER_URL, http, chain_client
    )
    app.state.storage_service = StorageService(
        IrysNode(settings.storage_node_url, http, chain_client),
        settings.storage_gateway_url,
        primary,
        fallback,
        http,
    )
    logger.info(
        "Storage initialized: node=%s, gateway=%s",
        settings.storage_node_url,
        settings.storage_gateway_url,
    )

    # 설명 제공자 + 분류/경험치 서비스
    explainer = get_explainer()
    logger.info("Explainer initialized: %s", explainer.name)
    event_bus = EventBus()
    app.state.event_bus = event_bus

    classifier = ClassifierService(
        chain_client,
        explainer,
        cluster="devnet" if settings.is_devnet else "mainnet-beta",
    )
    app.state.classifier_service = classifier
    app.state.experience_service = ExperienceService(
        chain=chain_client,
        classifier=classifier,
        event_bus=event_bus,
        signature_limit=settings.RECENT_SIGNATURE_LIMIT,
        window_hours=settings.XP_WINDOW_HOURS,
        batch_size=settings.CLASSIFY_BATCH_SIZE,
        batch_delay=settings.CLASSIFY_BATCH_DELAY_SECONDS,
    )
    logger.info("Services initialized.")

    yield

    # 종료 시 정리
    logger.info("Shutting down...")
    event_bus.clear()
    http.close()


app = FastAPI(title="Companion Sync", lifespan=lifespan)


@app.exception_handler(CompanionError)
async def companion_error_handler(request: Request, exc: CompanionError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    body = {"success": False, "error": exc.message}
    if exc.details is not None:
        body["details"] = jsonable_encoder(exc.details)
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": str(exc)})


app.include_router(health_router)
app.include_router(companion_router)
