"""UpdateService 테스트 (펀딩 → 업로드/업데이트 준비 → 검증, 원장 멱등성)"""

from datetime import datetime, timezone

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.signature import Signature

from src.core.errors import (
    AlreadyAppliedError,
    CompanionError,
    FundingError,
    NotFoundError,
    StorageError,
    SyncLimitError,
    ValidationError,
    VerificationError,
)
from src.core.event_bus import EventBus
from src.core.event_types import EventTypes
from src.core.update.models import PipelineStage
from src.db.models import SyncRecordModel
from src.services.chain.client import AccountData, BlockhashInfo, SignatureStatus
from src.services.chain.mpl_core import MPL_CORE_PROGRAM_ID
from src.services.chain.transactions import decode_transaction, sign_transaction
from src.services.update_service import UpdateService, load_keypair, normalize_signature

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
CURRENT_URI = "https://devnet.irys.xyz/old"

COMPANION = {
    "name": "Fluffy",
    "description": "A fluffy friend",
    "image": "/companions/fluffy_0.png",
    "experience": 260,
    "dateOfBirth": "2026-03-01T10:00:00.000Z",
    "lastUpdated": "2026-03-09T10:00:00.000Z",
    "attributes": [{"trait_type": "Toys", "value": "Ball"}],
}


@pytest.fixture()
def bus() -> EventBus:
    return EventBus()


@pytest.fixture()
def events(bus) -> list:
    received = []
    for event_type in (
        EventTypes.FUNDING_CONFIRMED,
        EventTypes.METADATA_UPLOADED,
        EventTypes.COMPANION_SYNCED,
    ):
        bus.subscribe(event_type, received.append)
    return received


@pytest.fixture()
def sleeps() -> list:
    return []


@pytest.fixture()
def service(db_session, bus, fake_chain, fake_storage, progression, authority, sleeps):
    return UpdateService(
        db=db_session,
        event_bus=bus,
        chain=fake_chain,
        storage=fake_storage,
        progression=progression,
        authority=authority,
        sleep=sleeps.append,
    )


@pytest.fixture()
def flow(fake_chain, fake_storage, authority, make_asset_data, make_companion_document):
    """펀딩이 확정된 상태의 자산 + 펀딩 지갑. 현재 메타데이터는 어제 sync한 experience 200"""
    owner = Keypair()
    asset = Keypair().pubkey()
    funding = Keypair()
    funding_signature = str(Signature.new_unique())

    fake_chain.accounts[str(asset)] = AccountData(
        owner=str(MPL_CORE_PROGRAM_ID),
        data=make_asset_data(owner.pubkey(), authority.pubkey()),
    )
    fake_chain.statuses[funding_signature] = SignatureStatus(confirmation_status="confirmed")
    fake_chain.balances[str(funding.pubkey())] = 20_000_000
    fake_storage.documents[CURRENT_URI] = make_companion_document()
    return {
        "owner": owner,
        "asset": str(asset),
        "funding": funding,
        "funding_signature": funding_signature,
    }


def _prepare(service, flow, **overrides):
    kwargs = dict(
        asset_address=flow["asset"],
        companion_data=COMPANION,
        payer_address=str(flow["owner"].pubkey()),
        funding_secret_key=str(flow["funding"]),
        funding_signature=flow["funding_signature"],
        now=NOW,
    )
    kwargs.update(overrides)
    return service.prepare_update(**kwargs)


class TestPrepareFunding:
    def test_quote(self, service, fake_storage, fake_chain):
        wallet = Keypair().pubkey()

        quote = service.prepare_funding(str(wallet))

        assert quote.estimated_cost == fake_storage.price + 10_000_000
        assert quote.last_valid_block_height == 1000
        assert str(load_keypair(quote.server_secret_key).pubkey()) == quote.server_wallet

        tx = decode_transaction(quote.funding_transaction)
        assert tx.message.account_keys[0] == wallet
        assert str(tx.message.recent_blockhash) == fake_chain.blockhash.blockhash

    def test_response_shape(self, service):
        body = service.prepare_funding(str(Keypair().pubkey())).to_response()
        assert set(body) == {
            "success",
            "fundingTransaction",
            "estimatedCost",
            "serverWallet",
            "serverSecretKey",
            "lastValidBlockHeight",
        }
        assert body["estimatedCost"] == str(1_234_567 + 10_000_000)

    def test_invalid_wallet(self, service, fake_chain):
        with pytest.raises(ValidationError):
            service.prepare_funding("nope")
        assert fake_chain.calls == []


class TestConfirmFunding:
    def test_not_confirmed(self, service, fake_chain):
        signature = str(Signature.new_unique())
        fake_chain.statuses[signature] = SignatureStatus(confirmation_status="processed")
        with pytest.raises(FundingError):
            service.confirm_funding(signature, str(Keypair().pubkey()))

    def test_single_recheck_after_delay(self, service, fake_chain, sleeps, events):
        signature = str(Signature.new_unique())
        wallet = str(Keypair().pubkey())
        fake_chain.statuses[signature] = SignatureStatus(confirmation_status="confirmed")
        fake_chain.balance_sequences[wallet] = [0, 5_000]

        assert service.confirm_funding(signature, wallet) == 5_000
        assert sleeps == [2.0]
        assert [e.event_type for e in events] == [EventTypes.FUNDING_CONFIRMED]

    def test_still_empty_after_recheck(self, service, fake_chain, sleeps):
        signature = str(Signature.new_unique())
        wallet = str(Keypair().pubkey())
        fake_chain.statuses[signature] = SignatureStatus(confirmation_status="finalized")

        with pytest.raises(FundingError):
            service.confirm_funding(signature, wallet)
        assert fake_chain.calls.count("getBalance") == 2
        assert sleeps == [2.0]


class TestFundingStatus:
    def test_unconfirmed(self, service):
        status = service.check_funding_status(
            str(Signature.new_unique()), str(Keypair().pubkey())
        )
        assert status.to_response() == {
            "success": True,
            "funded": False,
            "message": "Transaction not yet confirmed",
        }

    def test_funded_threshold(self, service, fake_chain):
        signature = str(Signature.new_unique())
        wallet = str(Keypair().pubkey())
        fake_chain.statuses[signature] = SignatureStatus(confirmation_status="confirmed")

        fake_chain.balances[wallet] = 4_000_000
        assert service.check_funding_status(signature, wallet).funded is False

        fake_chain.balances[wallet] = 5_000_000
        body = service.check_funding_status(signature, wallet).to_response()
        assert body == {"success": True, "funded": True, "balance": 0.005}


class TestPrepareUpdate:
    def test_uploads_recomputed_metadata(self, service, flow, fake_storage, progression, db_session, events):
        prepared = _prepare(service, flow)

        assert prepared.metadata_uri == "https://devnet.irys.xyz/doc1"
        document, payer = fake_storage.uploads[0]
        assert payer == str(flow["funding"].pubkey())
        traits = {a["trait_type"]: a["value"] for a in document["attributes"]}
        assert traits["Experience"] == "260"
        assert traits["Level"] == str(progression.evaluate(260).level)
        assert traits["LastUpdated"] == "2026-03-10T12:00:00.000Z"
        assert traits["Toys"] == "Ball"

        record = db_session.get(SyncRecordModel, flow["funding_signature"])
        assert record.stage == PipelineStage.UPDATE_TX_BUILT.value
        assert record.metadata_uri == prepared.metadata_uri
        assert [e.event_type for e in events] == [
            EventTypes.FUNDING_CONFIRMED,
            EventTypes.METADATA_UPLOADED,
        ]

    def test_transaction_partially_signed(self, service, flow, authority):
        prepared = _prepare(service, flow)

        tx = decode_transaction(prepared.transaction)
        assert tx.message.account_keys[0] == flow["owner"].pubkey()
        assert tx.signatures[0] == Signature.default()
        assert Signature.default() not in tx.signatures[1:]
        assert authority.pubkey() in tx.message.account_keys

    def test_retry_returns_stored_transaction(self, service, flow, fake_storage, fake_chain, db_session):
        first = _prepare(service, flow)
        fake_chain.blockhash = BlockhashInfo(blockhash=str(Hash.new_unique()), last_valid_block_height=2000)

        second = _prepare(service, flow)

        assert len(fake_storage.uploads) == 1
        assert second == first
        record = db_session.get(SyncRecordModel, flow["funding_signature"])
        assert record.update_transaction == first.transaction
        assert record.last_valid_block_height == 1000

    def test_expired_transaction_rebuilt_with_same_metadata(self, service, flow, fake_storage, fake_chain):
        first = _prepare(service, flow)
        fake_chain.block_height = 1001
        fake_chain.blockhash = BlockhashInfo(blockhash=str(Hash.new_unique()), last_valid_block_height=2000)

        second = _prepare(service, flow)

        assert len(fake_storage.uploads) == 1
        assert second.metadata_uri == first.metadata_uri
        assert second.transaction != first.transaction
        assert second.last_valid_block_height == 2000

    def test_landed_update_must_be_verified(self, service, flow, fake_chain, make_asset_data, authority):
        prepared = _prepare(service, flow)
        fake_chain.accounts[flow["asset"]] = AccountData(
            owner=str(MPL_CORE_PROGRAM_ID),
            data=make_asset_data(flow["owner"].pubkey(), authority.pubkey(), uri=prepared.metadata_uri),
        )
        with pytest.raises(AlreadyAppliedError) as exc:
            _prepare(service, flow)
        assert exc.value.details == prepared.metadata_uri

    def test_upload_failure_recorded(self, service, flow, fake_storage, db_session):
        fake_storage.fail_upload = True
        with pytest.raises(StorageError):
            _prepare(service, flow)

        record = db_session.get(SyncRecordModel, flow["funding_signature"])
        assert record.stage == PipelineStage.FUNDING_CONFIRMED.value
        assert record.error == "Metadata upload failed on both uploaders"
        assert record.metadata_uri is None

    def test_success_clears_recorded_error(self, service, flow, fake_storage, db_session):
        fake_storage.fail_upload = True
        with pytest.raises(StorageError):
            _prepare(service, flow)
        fake_storage.fail_upload = False

        _prepare(service, flow)

        record = db_session.get(SyncRecordModel, flow["funding_signature"])
        assert record.error is None
        assert record.stage == PipelineStage.UPDATE_TX_BUILT.value

    def test_verified_funding_cannot_be_reused(self, service, flow, fake_chain, make_update_transaction):
        prepared = _prepare(service, flow)
        update_signature = str(Signature.new_unique())
        fake_chain.statuses[update_signature] = SignatureStatus(confirmation_status="confirmed")
        fake_chain.transactions[update_signature] = make_update_transaction(
            flow["asset"], prepared.metadata_uri
        )
        service.verify_update(update_signature, flow["asset"], flow["funding_signature"])

        with pytest.raises(AlreadyAppliedError):
            _prepare(service, flow)

    def test_experience_cannot_decrease(self, service, flow, fake_storage, make_companion_document):
        fake_storage.documents[CURRENT_URI] = make_companion_document(experience=300)
        with pytest.raises(ValidationError) as exc:
            _prepare(service, flow)
        assert exc.value.details == {"current": 300, "requested": 260}
        assert fake_storage.uploads == []

    def test_already_synced_today(self, service, flow, fake_storage, make_companion_document):
        fake_storage.documents[CURRENT_URI] = make_companion_document(
            last_updated="2026-03-10T08:00:00Z"
        )
        with pytest.raises(SyncLimitError) as exc:
            _prepare(service, flow)
        assert exc.value.status_code == 400
        assert exc.value.details == {"hoursUntilNextSync": 12}
        assert fake_storage.uploads == []

    def test_gate_uses_published_timestamp(self, service, flow, fake_storage, make_companion_document):
        # 클라이언트가 어제 날짜를 보내도 게시된 lastUpdated가 오늘이면 거부
        fake_storage.documents[CURRENT_URI] = make_companion_document(
            last_updated="2026-03-10T01:00:00Z"
        )
        with pytest.raises(SyncLimitError):
            _prepare(service, flow, companion_data={**COMPANION, "lastUpdated": "2026-03-01T00:00:00Z"})

    def test_first_sync_on_mint_day(self, service, flow, fake_storage, make_companion_document):
        fake_storage.documents[CURRENT_URI] = make_companion_document(
            experience=0,
            last_updated="2026-03-10T09:00:00Z",
            date_of_birth="2026-03-10T09:00:00Z",
        )
        _prepare(service, flow)

        document, _ = fake_storage.uploads[0]
        traits = {a["trait_type"]: a["value"] for a in document["attributes"]}
        assert traits["DateOfBirth"] == "2026-03-10T09:00:00Z"

    def test_payer_must_own_asset(self, service, flow, fake_storage):
        with pytest.raises(ValidationError) as exc:
            _prepare(service, flow, payer_address=str(Keypair().pubkey()))
        assert exc.value.message == "Payer does not own this asset"
        assert fake_storage.uploads == []

    def test_unreadable_current_metadata(self, service, flow, fake_storage):
        fake_storage.documents.clear()
        with pytest.raises(StorageError):
            _prepare(service, flow)

    def test_funding_bound_to_asset(self, service, flow, make_asset_data, fake_chain):
        _prepare(service, flow)
        with pytest.raises(AlreadyAppliedError):
            _prepare(service, flow, asset_address=str(Keypair().pubkey()))

    def test_missing_asset(self, service, flow):
        with pytest.raises(NotFoundError):
            _prepare(service, flow, asset_address=str(Keypair().pubkey()))

    def test_collection_asset(self, service, flow, fake_chain, make_asset_data, authority):
        collection = Keypair().pubkey()
        fake_chain.accounts[flow["asset"]] = AccountData(
            owner=str(MPL_CORE_PROGRAM_ID),
            data=make_asset_data(flow["owner"].pubkey(), collection, authority_kind=2),
        )
        tx = decode_transaction(_prepare(service, flow).transaction)
        assert collection in tx.message.account_keys

    def test_unconfirmed_funding(self, service, flow, fake_chain, fake_storage):
        fake_chain.statuses.pop(flow["funding_signature"])
        with pytest.raises(FundingError):
            _prepare(service, flow)
        assert fake_storage.uploads == []

    def test_invalid_inputs(self, service, flow, fake_chain):
        with pytest.raises(ValidationError):
            _prepare(service, flow, funding_secret_key="not-a-key")
        with pytest.raises(ValidationError):
            _prepare(service, flow, companion_data={"experience": 10})
        with pytest.raises(ValidationError):
            _prepare(service, flow, payer_address="bad")
        assert fake_chain.calls == []

    def test_authority_not_configured(self, db_session, bus, fake_chain, fake_storage, progression, flow):
        service = UpdateService(db_session, bus, fake_chain, fake_storage, progression)
        with pytest.raises(CompanionError) as exc:
            _prepare(service, flow)
        assert exc.value.status_code == 500


class TestVerifyUpdate:
    def test_confirmed(self, service, flow, fake_chain, db_session, events, make_update_transaction):
        prepared = _prepare(service, flow)
        signature = str(Signature.new_unique())
        fake_chain.statuses[signature] = SignatureStatus(confirmation_status="finalized")
        fake_chain.transactions[signature] = make_update_transaction(flow["asset"], prepared.metadata_uri)

        assert service.verify_update(signature, flow["asset"]) == signature

        record = db_session.get(SyncRecordModel, flow["funding_signature"])
        assert record.stage == PipelineStage.VERIFIED.value
        assert record.update_signature == signature
        assert record.error is None
        synced = [e for e in events if e.event_type == EventTypes.COMPANION_SYNCED]
        assert synced[0].wallet_address == str(flow["owner"].pubkey())

    def test_signed_update_transaction_verifies(self, service, flow, fake_chain, db_session):
        # 클라이언트가 서명해 보낸 바로 그 트랜잭션
        prepared = _prepare(service, flow)
        raw = sign_transaction(prepared.transaction, flow["owner"])
        signature = fake_chain.send_raw_transaction(raw)

        service.verify_update(signature, flow["asset"], flow["funding_signature"])

        record = db_session.get(SyncRecordModel, flow["funding_signature"])
        assert record.stage == PipelineStage.VERIFIED.value

    def test_funding_signature_is_not_an_update(self, service, flow, fake_chain, db_session, events):
        _prepare(service, flow)
        fake_chain.transactions[flow["funding_signature"]] = {
            "transaction": {"message": {"instructions": []}},
            "meta": {"err": None},
        }

        with pytest.raises(VerificationError) as exc:
            service.verify_update(flow["funding_signature"], flow["asset"], flow["funding_signature"])
        assert exc.value.message == "Transaction is not an update of this asset"

        record = db_session.get(SyncRecordModel, flow["funding_signature"])
        assert record.stage == PipelineStage.UPDATE_TX_BUILT.value
        assert record.error == "Transaction is not an update of this asset"
        assert not [e for e in events if e.event_type == EventTypes.COMPANION_SYNCED]

    def test_update_of_another_asset(self, service, flow, fake_chain, make_update_transaction):
        prepared = _prepare(service, flow)
        signature = str(Signature.new_unique())
        fake_chain.statuses[signature] = SignatureStatus(confirmation_status="confirmed")
        fake_chain.transactions[signature] = make_update_transaction(
            str(Keypair().pubkey()), prepared.metadata_uri
        )
        with pytest.raises(VerificationError):
            service.verify_update(signature, flow["asset"], flow["funding_signature"])

    def test_update_with_other_metadata(self, service, flow, fake_chain, db_session, make_update_transaction):
        _prepare(service, flow)
        signature = str(Signature.new_unique())
        fake_chain.statuses[signature] = SignatureStatus(confirmation_status="confirmed")
        fake_chain.transactions[signature] = make_update_transaction(
            flow["asset"], "https://devnet.irys.xyz/elsewhere"
        )

        with pytest.raises(VerificationError) as exc:
            service.verify_update(signature, flow["asset"], flow["funding_signature"])
        assert exc.value.message == "Transaction does not match this sync"
        record = db_session.get(SyncRecordModel, flow["funding_signature"])
        assert record.stage == PipelineStage.UPDATE_TX_BUILT.value
        assert record.error == "Transaction does not match this sync"

    def test_not_confirmed(self, service, fake_chain):
        signature = str(Signature.new_unique())
        fake_chain.statuses[signature] = SignatureStatus(confirmation_status="processed")
        with pytest.raises(VerificationError) as exc:
            service.verify_update(signature, str(Keypair().pubkey()))
        assert exc.value.details == {"confirmationStatus": "processed", "err": None}

    def test_failed_transaction(self, service, fake_chain):
        signature = str(Signature.new_unique())
        fake_chain.statuses[signature] = SignatureStatus(
            confirmation_status="confirmed", err="InstructionError"
        )
        with pytest.raises(VerificationError):
            service.verify_update(signature, str(Keypair().pubkey()))

    def test_transaction_with_error(self, service, fake_chain, make_update_transaction):
        asset = str(Keypair().pubkey())
        signature = str(Signature.new_unique())
        fake_chain.failing.add("getSignatureStatuses")
        fake_chain.transactions[signature] = make_update_transaction(
            asset, "https://devnet.irys.xyz/doc1", err={"InstructionError": [0, "Custom"]}
        )
        with pytest.raises(VerificationError) as exc:
            service.verify_update(signature, asset)
        assert exc.value.details == "Transaction found but has errors"

    def test_status_failure_falls_back_to_transaction(self, service, fake_chain, make_update_transaction):
        asset = str(Keypair().pubkey())
        signature = str(Signature.new_unique())
        fake_chain.failing.add("getSignatureStatuses")
        fake_chain.transactions[signature] = make_update_transaction(asset, "https://devnet.irys.xyz/doc1")

        assert service.verify_update(signature, asset) == signature

    def test_fallback_transaction_missing(self, service, fake_chain):
        fake_chain.failing.add("getSignatureStatuses")
        with pytest.raises(VerificationError) as exc:
            service.verify_update(str(Signature.new_unique()), str(Keypair().pubkey()))
        assert exc.value.details == "Transaction not found"

    def test_fallback_lookup_fails(self, service, fake_chain):
        fake_chain.failing.update({"getSignatureStatuses", "getTransaction"})
        with pytest.raises(VerificationError) as exc:
            service.verify_update(str(Signature.new_unique()), str(Keypair().pubkey()))
        assert exc.value.message == "Failed to verify transaction"

    def test_byte_array_signature(self, service, fake_chain, make_update_transaction):
        asset = str(Keypair().pubkey())
        signature = Signature.new_unique()
        fake_chain.statuses[str(signature)] = SignatureStatus(confirmation_status="confirmed")
        fake_chain.transactions[str(signature)] = make_update_transaction(asset, "https://devnet.irys.xyz/doc1")
        assert service.verify_update(list(bytes(signature)), asset) == str(signature)


class TestNormalizeSignature:
    def test_forms(self):
        signature = Signature.new_unique()
        raw = list(bytes(signature))
        assert normalize_signature(str(signature)) == str(signature)
        assert normalize_signature(raw) == str(signature)
        assert normalize_signature(",".join(str(b) for b in raw)) == str(signature)

    def test_invalid(self):
        with pytest.raises(ValidationError):
            normalize_signature("1,2,x")
        with pytest.raises(ValidationError):
            normalize_signature([1, 2, 3])
        with pytest.raises(ValidationError):
            normalize_signature("not-a-signature")


class TestUploadStatus:
    def test_delegates_to_storage(self, service, fake_storage):
        fake_storage.available["https://devnet.irys.xyz/doc1"] = True
        assert service.check_upload_status("https://devnet.irys.xyz/doc1") == (
            True,
            "Metadata is accessible",
        )

    def test_missing_uri(self, service):
        with pytest.raises(ValidationError):
            service.check_upload_status("")
