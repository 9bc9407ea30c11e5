"""Shared test fixtures."""

import struct
from typing import Any, Optional

import base58
import pytest
from fastapi.testclient import TestClient
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import Transaction
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from src.core.companion.metadata import build_metadata_document
from src.core.companion.models import Companion
from src.core.errors import ChainError, StorageError
from src.core.event_bus import EventBus
from src.core.game_config import GameConfig
from src.core.progression import ProgressionEngine
from src.core.transaction.models import SignatureInfo
from src.db.database import get_db
from src.db.models import Base, SyncRecordModel
from src.main import app
from src.services.chain.client import AccountData, BlockhashInfo, SignatureStatus
from src.services.chain.mpl_core import MPL_CORE_PROGRAM_ID, update_v1_data
from src.services.chain.transactions import first_signature
from src.services.classifier_service import ClassifierService
from src.services.experience_service import ExperienceService
from src.services.explainer.mock import MockExplainer

TEST_ENGINE = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSession = sessionmaker(bind=TEST_ENGINE, autocommit=False, autoflush=False)
Base.metadata.create_all(TEST_ENGINE)


def _override_get_db():
    db = TestSession()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = _override_get_db

GAME_CONFIG = GameConfig(
    level_thresholds=(0, 100, 250, 450, 700, 1000, 1350, 1750, 2200, 2700, 3300),
    evolution_thresholds=(0, 1, 3, 6, 9),
    companion_images={
        "fluffy": ("/companions/fluffy_0.png", "/companions/fluffy_1.png", "/companions/fluffy_2.png"),
        "sparky": ("/companions/sparky_0.png", "/companions/sparky_1.png", "/companions/sparky_2.png"),
        "ember": ("/companions/ember_0.png", "/companions/ember_1.png", "/companions/ember_2.png"),
    },
)


def _borsh_string(value: str) -> bytes:
    encoded = value.encode("utf-8")
    return struct.pack("<I", len(encoded)) + encoded


def core_asset_data(
    owner: Pubkey,
    authority: Optional[Pubkey],
    name: str = "Fluffy",
    uri: str = "https://devnet.irys.xyz/old",
    authority_kind: int = 1,
) -> bytes:
    """BaseAssetV1 계정 바이트"""
    data = bytes([1]) + bytes(owner) + bytes([authority_kind])
    if authority is not None:
        data += bytes(authority)
    return data + _borsh_string(name) + _borsh_string(uri) + b"\x00"


def core_collection_data(authority: Pubkey, name: str = "Companions") -> bytes:
    return (
        bytes([5])
        + bytes(authority)
        + _borsh_string(name)
        + _borsh_string("https://devnet.irys.xyz/collection")
        + struct.pack("<II", 3, 3)
    )


def companion_document(
    name: str = "Fluffy",
    experience: int = 200,
    last_updated: Optional[str] = "2026-03-09T10:00:00Z",
    date_of_birth: str = "2026-03-01T10:00:00Z",
) -> dict[str, Any]:
    """에셋 URI에 게시된 메타데이터 문서"""
    return build_metadata_document(
        Companion(
            name=name,
            date_of_birth=date_of_birth,
            experience=experience,
            level=1,
            last_updated=last_updated,
        )
    )


def parsed_transaction(raw: bytes) -> dict[str, Any]:
    """서명된 트랜잭션 바이트 → jsonParsed 형태 (파싱되지 않은 명령어만)"""
    tx = Transaction.from_bytes(raw)
    keys = [str(key) for key in tx.message.account_keys]
    instructions = [
        {
            "programId": keys[ix.program_id_index],
            "accounts": [keys[i] for i in ix.accounts],
            "data": base58.b58encode(bytes(ix.data)).decode(),
        }
        for ix in tx.message.instructions
    ]
    return {
        "transaction": {"message": {"instructions": instructions}},
        "meta": {"err": None},
    }


def update_transaction_json(
    asset: str, uri: str, err: Optional[dict] = None
) -> dict[str, Any]:
    """asset에 대한 UpdateV1 하나를 담은 jsonParsed 트랜잭션"""
    return {
        "transaction": {
            "message": {
                "instructions": [
                    {
                        "programId": str(MPL_CORE_PROGRAM_ID),
                        "accounts": [asset],
                        "data": base58.b58encode(update_v1_data("Fluffy", uri)).decode(),
                    }
                ]
            }
        },
        "meta": {"err": err},
    }


class FakeChainClient:
    """ChainClient의 인메모리 대역"""

    def __init__(self) -> None:
        self.balances: dict[str, int] = {}
        self.default_balance = 0
        self.balance_sequences: dict[str, list[int]] = {}
        self.statuses: dict[str, SignatureStatus] = {}
        self.transactions: dict[str, dict[str, Any]] = {}
        self.signatures: dict[str, list[SignatureInfo]] = {}
        self.accounts: dict[str, AccountData] = {}
        self.blockhash = BlockhashInfo(blockhash=str(Hash.new_unique()), last_valid_block_height=1000)
        self.block_height = 900
        # False면 전송된 트랜잭션이 반영되지 않는다 (상태 없음)
        self.land_sent = True
        self.sent: list[bytes] = []
        self.confirmed: list[tuple[str, int]] = []
        self.failing: set[str] = set()
        self.calls: list[str] = []

    def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.failing:
            raise ChainError(f"RPC {operation} failed: boom")

    def get_balance(self, address: str) -> int:
        self._enter("getBalance")
        sequence = self.balance_sequences.get(address)
        if sequence:
            return sequence.pop(0)
        return self.balances.get(address, self.default_balance)

    def get_signature_status(self, signature: str) -> Optional[SignatureStatus]:
        self._enter("getSignatureStatuses")
        return self.statuses.get(signature)

    def get_parsed_transaction(self, signature: str) -> Optional[dict[str, Any]]:
        self._enter("getTransaction")
        return self.transactions.get(signature)

    def get_signatures_for_address(self, address: str, limit: int) -> list[SignatureInfo]:
        self._enter("getSignaturesForAddress")
        return list(self.signatures.get(address, []))[:limit]

    def get_latest_blockhash(self) -> BlockhashInfo:
        self._enter("getLatestBlockhash")
        return self.blockhash

    def get_account_data(self, address: str) -> Optional[AccountData]:
        self._enter("getAccountInfo")
        return self.accounts.get(address)

    def get_block_height(self) -> int:
        self._enter("getBlockHeight")
        return self.block_height

    def get_program_accounts(
        self, program_id: str, filters: list
    ) -> list[tuple[str, AccountData]]:
        self._enter("getProgramAccounts")
        matches = []
        for address, account in self.accounts.items():
            if account.owner != program_id:
                continue
            if all(
                account.data[f.offset:f.offset + len(base58.b58decode(f.bytes))]
                == base58.b58decode(f.bytes)
                for f in filters
            ):
                matches.append((address, account))
        return matches

    def send_raw_transaction(self, transaction: bytes) -> str:
        self._enter("sendTransaction")
        self.sent.append(transaction)
        signature = first_signature(transaction)
        if self.land_sent:
            self.statuses[signature] = SignatureStatus(confirmation_status="confirmed")
            self.transactions[signature] = parsed_transaction(transaction)
        return signature

    def confirm_transaction(self, signature: str, last_valid_block_height: int) -> None:
        self._enter("confirmTransaction")
        self.confirmed.append((signature, last_valid_block_height))


class FakeStorage:
    """StorageService의 인메모리 대역"""

    def __init__(self, price: int = 1_234_567) -> None:
        self.price = price
        self.uploads: list[tuple[dict[str, Any], str]] = []
        self.fail_upload = False
        self.available: dict[str, bool] = {}
        self.documents: dict[str, dict[str, Any]] = {}

    def uri_for(self, content_id: str) -> str:
        return f"https://devnet.irys.xyz/{content_id}"

    def estimate_cost(self, size: int) -> int:
        return self.price

    def upload_json(self, document: dict[str, Any], payer: Keypair) -> str:
        if self.fail_upload:
            raise StorageError("Metadata upload failed on both uploaders")
        self.uploads.append((document, str(payer.pubkey())))
        uri = self.uri_for(f"doc{len(self.uploads)}")
        self.documents[uri] = document
        return uri

    def fetch_json(self, uri: str) -> dict[str, Any]:
        if uri not in self.documents:
            raise StorageError("Failed to fetch companion metadata", details=uri)
        return self.documents[uri]

    def is_available(self, uri: str) -> tuple[bool, str]:
        if self.available.get(uri):
            return True, "Metadata is accessible"
        return False, "Metadata not yet accessible (status: 404)"


@pytest.fixture()
def fake_chain() -> FakeChainClient:
    return FakeChainClient()


@pytest.fixture()
def fake_storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture()
def authority() -> Keypair:
    return Keypair()


@pytest.fixture()
def progression() -> ProgressionEngine:
    return ProgressionEngine(GAME_CONFIG)


@pytest.fixture()
def wired_app(fake_chain, fake_storage, authority, progression):
    """app.state를 대역으로 채운다 (lifespan 없이)."""
    bus = EventBus()
    classifier = ClassifierService(fake_chain, MockExplainer())
    app.state.game_config = GAME_CONFIG
    app.state.progression = progression
    app.state.chain_client = fake_chain
    app.state.authority = authority
    app.state.storage_service = fake_storage
    app.state.event_bus = bus
    app.state.classifier_service = classifier
    app.state.experience_service = ExperienceService(
        chain=fake_chain,
        classifier=classifier,
        event_bus=bus,
        batch_delay=0,
    )
    yield app
    bus.clear()


@pytest.fixture()
def client(wired_app) -> TestClient:
    """FastAPI TestClient wired to an in-memory SQLite database."""
    return TestClient(wired_app)


@pytest.fixture()
def db_session() -> Session:
    """Raw database session for direct DB assertions."""
    session = TestSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def _clean_ledger():
    yield
    session = TestSession()
    try:
        session.query(SyncRecordModel).delete()
        session.commit()
    finally:
        session.close()


@pytest.fixture()
def make_asset_data():
    return core_asset_data


@pytest.fixture()
def make_collection_data():
    return core_collection_data


@pytest.fixture()
def make_companion_document():
    return companion_document


@pytest.fixture()
def make_update_transaction():
    return update_transaction_json
