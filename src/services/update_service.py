"""동행 업데이트 Service: 펀딩 → 메타데이터 업로드 → Core 업데이트 → 검증

신뢰 모델:
- 서비스가 update authority 키를 보관한다 (설정의 AUTHORITY_PRIVATE_KEY)
- 클라이언트가 에셋 소유자이자 fee payer
- 스토리지 비용은 흐름마다 새로 만든 펀딩 지갑에서 낸다. 펀딩 키는
  클라이언트에게만 돌려주고 서버에는 저장하지 않는다.

진행 규칙(experience 비감소, 하루 1회)은 에셋 URI에 게시된 현재 메타데이터로
판정한다.

멱등성: sync_records 원장이 펀딩 서명 단위로 진행 상황을 기록한다.
만든 업데이트 트랜잭션과 blockhash 유효 높이도 원장에 남겨 재요청에 같은
트랜잭션을 돌려준다. 마지막 실패 메시지는 error 컬럼에 남는다.
"""

import logging
import time
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable, Optional, Union

import base58
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from sqlalchemy.orm import Session

from src.core.companion.metadata import (
    apply_progression,
    build_metadata_document,
    companion_from_metadata,
    companion_from_request,
)
from src.core.companion.models import Companion
from src.core.errors import (
    AlreadyAppliedError,
    ChainError,
    CompanionError,
    FundingError,
    NotFoundError,
    StorageError,
    SyncLimitError,
    ValidationError,
    VerificationError,
)
from src.core.event_bus import EventBus, WalletEvent
from src.core.event_types import EventTypes
from src.core.progression import ProgressionEngine
from src.core.sync_gate import can_sync
from src.core.timestamps import to_utc, utc_now
from src.core.update.models import PipelineStage
from src.db.models import SyncRecordModel
from src.services.chain.client import ChainClient, parse_pubkey, parse_signature
from src.services.chain.mpl_core import (
    MPL_CORE_PROGRAM_ID,
    CoreAsset,
    DecodeError,
    decode_asset,
    decode_collection,
    decode_update_v1_data,
)
from src.services.chain.transactions import (
    build_funding_transaction,
    build_update_transaction,
    encode_transaction,
)
from src.services.storage.service import StorageService

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000

RawSignature = Union[str, list[int]]


@dataclass(frozen=True)
class FundingQuote:
    """A단계 결과. 서명되지 않은 이체 트랜잭션 + 펀딩 지갑."""

    funding_transaction: str
    estimated_cost: int
    server_wallet: str
    server_secret_key: str
    last_valid_block_height: int

    def to_response(self) -> dict[str, Any]:
        return {
            "success": True,
            "fundingTransaction": self.funding_transaction,
            "estimatedCost": str(self.estimated_cost),
            "serverWallet": self.server_wallet,
            "serverSecretKey": self.server_secret_key,
            "lastValidBlockHeight": self.last_valid_block_height,
        }


@dataclass(frozen=True)
class FundingStatus:
    funded: bool
    balance: Optional[int] = None
    message: Optional[str] = None

    def to_response(self) -> dict[str, Any]:
        body: dict[str, Any] = {"success": True, "funded": self.funded}
        if self.balance is not None:
            body["balance"] = self.balance / LAMPORTS_PER_SOL
        if self.message:
            body["message"] = self.message
        return body


@dataclass(frozen=True)
class PreparedUpdate:
    """B단계 결과. authority가 부분 서명한 업데이트 트랜잭션."""

    transaction: str
    metadata_uri: str
    last_valid_block_height: int

    def to_response(self) -> dict[str, Any]:
        return {
            "success": True,
            "transaction": self.transaction,
            "metadataUri": self.metadata_uri,
            "lastValidBlockHeight": self.last_valid_block_height,
        }


def normalize_signature(signature: RawSignature) -> str:
    """바이트 배열 / "1,2,3" 문자열 / base58 문자열 → base58 서명."""
    if isinstance(signature, list):
        raw = bytes(signature)
    elif isinstance(signature, str) and "," in signature:
        try:
            raw = bytes(int(part) for part in signature.split(","))
        except ValueError as e:
            raise ValidationError("Invalid transaction signature") from e
    else:
        return str(parse_signature(str(signature)))

    try:
        return str(Signature.from_bytes(raw))
    except (ValueError, TypeError) as e:
        raise ValidationError("Invalid transaction signature") from e


def load_keypair(secret: str, field_name: str = "secret key") -> Keypair:
    """base58 64바이트 비밀키 → Keypair. 실패 시 ValidationError."""
    try:
        return Keypair.from_bytes(base58.b58decode(secret))
    except (ValueError, TypeError) as e:
        raise ValidationError(f"Invalid {field_name}") from e


def update_v1_uri(transaction: dict[str, Any], asset: Pubkey) -> Optional[str]:
    """jsonParsed 트랜잭션에서 asset을 대상으로 하는 UpdateV1의 새 URI. 없으면 None."""
    message = (transaction.get("transaction") or {}).get("message") or {}
    for instruction in message.get("instructions") or []:
        if instruction.get("programId") != str(MPL_CORE_PROGRAM_ID):
            continue
        accounts = instruction.get("accounts") or []
        if not accounts or accounts[0] != str(asset):
            continue
        try:
            _, uri = decode_update_v1_data(base58.b58decode(instruction.get("data") or ""))
        except ValueError:
            continue
        if uri is not None:
            return uri
    return None


class UpdateService:
    """업데이트 흐름의 서버 측 단계"""

    def __init__(
        self,
        db: Session,
        event_bus: EventBus,
        chain: ChainClient,
        storage: StorageService,
        progression: ProgressionEngine,
        authority: Optional[Keypair] = None,
        collection_address: Optional[str] = None,
        metadata_size: int = 5000,
        rent_margin: int = 10_000_000,
        min_funded: int = 5_000_000,
        recheck_delay: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._db = db
        self._bus = event_bus
        self._chain = chain
        self._storage = storage
        self._progression = progression
        self._authority = authority
        self._collection_address = collection_address
        self._metadata_size = metadata_size
        self._rent_margin = rent_margin
        self._min_funded = min_funded
        self._recheck_delay = recheck_delay
        self._sleep = sleep

    # === A: 펀딩 준비 ===

    def prepare_funding(self, wallet_address: str) -> FundingQuote:
        """서명되지 않은 펀딩 이체 생성. 아무것도 저장하지 않는다."""
        payer = parse_pubkey(wallet_address, "wallet address")
        price = self._storage.estimate_cost(self._metadata_size)
        lamports = price + self._rent_margin

        funding_keypair = Keypair()
        blockhash = self._chain.get_latest_blockhash()
        transaction = build_funding_transaction(
            payer, funding_keypair.pubkey(), lamports, blockhash.blockhash
        )
        logger.info(
            "Funding prepared: wallet=%s, funding_wallet=%s, lamports=%d",
            wallet_address,
            funding_keypair.pubkey(),
            lamports,
        )
        return FundingQuote(
            funding_transaction=encode_transaction(transaction),
            estimated_cost=lamports,
            server_wallet=str(funding_keypair.pubkey()),
            server_secret_key=str(funding_keypair),
            last_valid_block_height=blockhash.last_valid_block_height,
        )

    # === 펀딩 확인 ===

    def confirm_funding(self, funding_signature: str, funding_wallet: str) -> int:
        """펀딩 서명 확정 + 펀딩 지갑 잔액 확인. 잔액(lamports) 반환.

        잔액이 0이면 고정 지연 후 정확히 한 번 더 확인한다.

        Raises:
            FundingError: 서명 미확정 / 잔액 미반영
        """
        status = self._chain.get_signature_status(funding_signature)
        if status is None or not status.is_confirmed:
            raise FundingError(
                "Funding transaction failed or not confirmed",
                details=status.err if status else None,
            )

        balance = self._chain.get_balance(funding_wallet)
        if balance <= 0:
            logger.info(
                "Funding wallet %s empty, rechecking in %.1fs",
                funding_wallet,
                self._recheck_delay,
            )
            self._sleep(self._recheck_delay)
            balance = self._chain.get_balance(funding_wallet)
        if balance <= 0:
            raise FundingError(
                "Funding is not yet visible in the funding wallet. Please retry shortly."
            )

        self._bus.emit(
            WalletEvent(
                event_type=EventTypes.FUNDING_CONFIRMED,
                wallet_address=funding_wallet,
                source="update_service",
                data={"funding_signature": funding_signature, "balance": balance},
            )
        )
        return balance

    def check_funding_status(
        self, funding_signature: str, funding_wallet: str
    ) -> FundingStatus:
        """폴링용. 부분 결과는 funded=False로 돌려준다."""
        parse_pubkey(funding_wallet, "server wallet")
        status = self._chain.get_signature_status(funding_signature)
        if status is None or not status.is_confirmed:
            return FundingStatus(funded=False, message="Transaction not yet confirmed")

        balance = self._chain.get_balance(funding_wallet)
        return FundingStatus(funded=balance >= self._min_funded, balance=balance)

    # === B: 메타데이터 업로드 + 업데이트 트랜잭션 ===

    def prepare_update(
        self,
        asset_address: str,
        companion_data: dict[str, Any],
        payer_address: str,
        funding_secret_key: str,
        funding_signature: str,
        now: Optional[datetime] = None,
    ) -> PreparedUpdate:
        """메타데이터를 올리고 authority가 부분 서명한 업데이트 트랜잭션 생성.

        진행 규칙은 체인에 게시된 현재 메타데이터 기준이다
        (클라이언트가 보낸 experience / lastUpdated는 믿지 않는다):
        - experience는 줄어들 수 없다
        - 현재 lastUpdated로 하루 1회 제한 판정

        같은 펀딩 서명으로 재실행하면:
        - 만든 트랜잭션의 blockhash가 아직 유효하면 그 트랜잭션을 그대로 돌려준다
        - 만료됐고 체인에 반영되지 않았으면 올린 URI로 새로 만든다

        Raises:
            ValidationError: 파라미터 형식 오류, 소유자 불일치, experience 감소
            SyncLimitError: 오늘 이미 sync함
            AlreadyAppliedError: 이 펀딩 서명으로 이미 검증 완료 / 이미 반영됨
            FundingError: 펀딩 미확정
            StorageError: 현재 메타데이터 조회 실패, 업로드 실패
            NotFoundError: 에셋 없음
        """
        asset = parse_pubkey(asset_address, "asset address")
        payer = parse_pubkey(payer_address, "payer public key")
        funding_keypair = load_keypair(funding_secret_key, "server secret key")
        funding_signature = str(parse_signature(funding_signature))
        authority = self._require_authority()
        now = to_utc(now) if now else utc_now()

        try:
            companion = companion_from_request(companion_data)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        record = self._db.get(SyncRecordModel, funding_signature)
        if record is not None:
            if record.stage == PipelineStage.VERIFIED.value:
                raise AlreadyAppliedError(
                    "This funding transaction was already used for a verified update",
                    details=record.update_signature,
                )
            if record.asset_address != asset_address:
                raise AlreadyAppliedError(
                    "This funding transaction belongs to a different asset",
                    details=record.asset_address,
                )

        core_asset = self._load_asset(asset)
        if core_asset.owner != payer:
            raise ValidationError("Payer does not own this asset", details=str(core_asset.owner))

        if record is not None and record.update_transaction:
            stored = self._stored_update(record, core_asset)
            if stored is not None:
                return stored

        companion = self._check_progress(companion, self._current_companion(core_asset), now)

        funding_wallet = str(funding_keypair.pubkey())
        self.confirm_funding(funding_signature, funding_wallet)
        if record is None:
            record = self._save_record(
                None,
                funding_signature=funding_signature,
                asset_address=asset_address,
                payer_address=payer_address,
                funding_wallet=funding_wallet,
                stage=PipelineStage.FUNDING_CONFIRMED,
            )

        try:
            return self._build_update(record, companion, core_asset, authority, funding_keypair, now)
        except CompanionError as e:
            self._save_record(record, error=e.message)
            raise

    def _build_update(
        self,
        record: SyncRecordModel,
        companion: Companion,
        core_asset: CoreAsset,
        authority: Keypair,
        funding_keypair: Keypair,
        now: datetime,
    ) -> PreparedUpdate:
        if record.metadata_uri:
            metadata_uri = record.metadata_uri
            logger.info(
                "Reusing uploaded metadata for %s: %s", record.funding_signature, metadata_uri
            )
        else:
            updated = apply_progression(companion, self._progression, now)
            metadata_uri = self._storage.upload_json(
                build_metadata_document(updated), funding_keypair
            )
            self._save_record(
                record, metadata_uri=metadata_uri, stage=PipelineStage.METADATA_UPLOADED
            )
            self._bus.emit(
                WalletEvent(
                    event_type=EventTypes.METADATA_UPLOADED,
                    wallet_address=record.payer_address,
                    source="update_service",
                    data={"asset_address": record.asset_address, "metadata_uri": metadata_uri},
                )
            )

        collection = self._resolve_collection(core_asset)
        blockhash = self._chain.get_latest_blockhash()
        transaction = encode_transaction(
            build_update_transaction(
                asset=core_asset.address,
                payer=core_asset.owner,
                authority=authority,
                name=companion.name,
                uri=metadata_uri,
                blockhash=blockhash.blockhash,
                collection=collection,
            )
        )
        self._save_record(
            record,
            update_transaction=transaction,
            last_valid_block_height=blockhash.last_valid_block_height,
            error=None,
            stage=PipelineStage.UPDATE_TX_BUILT,
        )
        logger.info(
            "Update prepared: asset=%s, payer=%s, uri=%s",
            record.asset_address,
            record.payer_address,
            metadata_uri,
        )
        return PreparedUpdate(
            transaction=transaction,
            metadata_uri=metadata_uri,
            last_valid_block_height=blockhash.last_valid_block_height,
        )

    # === C: 검증 ===

    def verify_update(
        self,
        signature: RawSignature,
        asset_address: str,
        funding_signature: Optional[str] = None,
    ) -> str:
        """업데이트 서명 확정 + 이 에셋의 UpdateV1인지 확인. 성공하면 원장을 VERIFIED로.

        상태 조회가 실패하면 트랜잭션 조회 결과만으로 판정한다.
        원장 레코드는 펀딩 서명으로, 없으면 트랜잭션이 쓴 URI로 찾는다.

        Raises:
            VerificationError: 미확정 / 실패 / 조회 불가 / 다른 트랜잭션
        """
        asset = parse_pubkey(asset_address, "asset address")
        signature = normalize_signature(signature)
        record = self._db.get(SyncRecordModel, funding_signature) if funding_signature else None

        try:
            metadata_uri = self._confirmed_update_uri(signature, asset)
            if record is None:
                record = self._find_record(asset_address, metadata_uri)
            elif record.asset_address != asset_address or record.metadata_uri != metadata_uri:
                raise VerificationError(
                    "Transaction does not match this sync",
                    details={"expected": record.metadata_uri, "found": metadata_uri},
                )
        except VerificationError as e:
            if record is not None:
                self._save_record(record, error=e.message)
            raise

        wallet_address = asset_address
        if record is not None:
            wallet_address = record.payer_address
            self._save_record(
                record, update_signature=signature, stage=PipelineStage.VERIFIED, error=None
            )

        logger.info("Companion update verified: asset=%s, signature=%s", asset_address, signature)
        self._bus.emit(
            WalletEvent(
                event_type=EventTypes.COMPANION_SYNCED,
                wallet_address=wallet_address,
                source="update_service",
                data={"asset_address": asset_address, "signature": signature},
            )
        )
        return signature

    def check_upload_status(self, metadata_uri: str) -> tuple[bool, str]:
        if not metadata_uri:
            raise ValidationError("Missing metadata URI")
        return self._storage.is_available(metadata_uri)

    # === 내부 ===

    def _require_authority(self) -> Keypair:
        if self._authority is None:
            raise CompanionError("Update authority is not configured")
        return self._authority

    def _load_asset(self, asset: Pubkey) -> CoreAsset:
        account = self._chain.get_account_data(str(asset))
        if account is None:
            raise NotFoundError("Asset not found", details=str(asset))
        try:
            return decode_asset(asset, account.data)
        except DecodeError as e:
            raise ValidationError(str(e)) from e

    def _current_companion(self, core_asset: CoreAsset) -> Companion:
        """에셋 URI에 게시된 현재 동행 상태"""
        document = self._storage.fetch_json(core_asset.uri)
        try:
            return companion_from_metadata(document)
        except ValueError as e:
            raise StorageError("Current companion metadata is invalid", details=str(e)) from e

    def _check_progress(self, requested: Companion, current: Companion, now: datetime) -> Companion:
        """현재 상태 대비 진행 규칙 확인. dateOfBirth는 현재 값을 유지한 사본 반환."""
        if requested.experience < current.experience:
            raise ValidationError(
                "Experience cannot decrease",
                details={"current": current.experience, "requested": requested.experience},
            )
        try:
            decision = can_sync(current.last_updated, current.date_of_birth or None, now)
        except ValueError as e:
            raise StorageError("Current companion metadata is invalid", details=str(e)) from e
        if not decision.allowed:
            raise SyncLimitError(
                decision.message, details={"hoursUntilNextSync": decision.hours_until_next}
            )
        if current.date_of_birth:
            return replace(requested, date_of_birth=current.date_of_birth)
        return requested

    def _stored_update(
        self, record: SyncRecordModel, core_asset: CoreAsset
    ) -> Optional[PreparedUpdate]:
        """원장에 저장된 업데이트 트랜잭션. 만료되어 다시 만들어야 하면 None."""
        if core_asset.uri == record.metadata_uri:
            raise AlreadyAppliedError(
                "This update has already landed on chain. Verify it to finish the sync.",
                details=record.metadata_uri,
            )
        if self._chain.get_block_height() <= record.last_valid_block_height:
            logger.info("Returning stored update transaction for %s", record.funding_signature)
            return PreparedUpdate(
                transaction=record.update_transaction,
                metadata_uri=record.metadata_uri,
                last_valid_block_height=record.last_valid_block_height,
            )
        # blockhash가 만료됐고 에셋 URI도 바뀌지 않았다 → 이전 트랜잭션은 반영될 수 없다
        logger.info(
            "Stored update transaction for %s expired (last valid height %d), rebuilding",
            record.funding_signature,
            record.last_valid_block_height,
        )
        return None

    def _confirmed_update_uri(self, signature: str, asset: Pubkey) -> str:
        """확정된 트랜잭션에서 asset 대상 UpdateV1의 새 URI."""
        status_error: Optional[ChainError] = None
        try:
            status = self._chain.get_signature_status(signature)
        except ChainError as e:
            logger.warning("Signature status lookup failed, fetching transaction: %s", e)
            status_error = e
        else:
            if status is None or not status.is_confirmed:
                raise VerificationError(
                    "Transaction failed or not confirmed",
                    details={
                        "confirmationStatus": status.confirmation_status if status else None,
                        "err": status.err if status else None,
                    },
                )

        try:
            transaction = self._chain.get_parsed_transaction(signature)
        except ChainError as tx_error:
            details = f"failed to get transaction: {tx_error}"
            if status_error is not None:
                details = f"{status_error}, and {details}"
            raise VerificationError("Failed to verify transaction", details=details) from tx_error

        if transaction is None:
            raise VerificationError(
                "Transaction verification failed", details="Transaction not found"
            )
        meta = transaction.get("meta") or {}
        if meta.get("err") is not None:
            raise VerificationError(
                "Transaction verification failed",
                details="Transaction found but has errors",
            )

        metadata_uri = update_v1_uri(transaction, asset)
        if metadata_uri is None:
            raise VerificationError(
                "Transaction is not an update of this asset", details=signature
            )
        return metadata_uri

    def _resolve_collection(self, core_asset: CoreAsset) -> Optional[Pubkey]:
        if core_asset.collection is not None:
            return core_asset.collection
        if not self._collection_address:
            return None

        address = parse_pubkey(self._collection_address, "collection address")
        collection_account = self._chain.get_account_data(self._collection_address)
        if collection_account is None:
            raise ChainError("Failed to fetch collection data")
        try:
            decode_collection(address, collection_account.data)
        except DecodeError as e:
            raise ChainError(f"Failed to fetch collection data: {e}") from e
        return address

    def _find_record(
        self, asset_address: str, metadata_uri: str
    ) -> Optional[SyncRecordModel]:
        return (
            self._db.query(SyncRecordModel)
            .filter(
                SyncRecordModel.asset_address == asset_address,
                SyncRecordModel.metadata_uri == metadata_uri,
            )
            .first()
        )

    def _save_record(
        self, record: Optional[SyncRecordModel], **fields: Any
    ) -> SyncRecordModel:
        stage = fields.pop("stage", None)
        if record is None:
            record = SyncRecordModel(**fields)
            self._db.add(record)
        else:
            for key, value in fields.items():
                setattr(record, key, value)
        if stage is not None:
            record.stage = stage.value
        self._db.commit()
        return record
