"""클라이언트 측 sync 파이프라인

PipelineState를 단계마다 on_transition 콜백으로 넘겨 호출자가 저장하게 한다.
저장된 상태로 다시 run()하면 이어서 진행한다.
- 펀딩 서명이 있으면 펀딩 단계로 돌아가지 않는다 (두 번째 이체 없음)
- 업데이트 서명이 있으면 새 업데이트를 만들지 않고 검증만 한다

서명된 트랜잭션 바이트와 blockhash 유효 높이는 전송 전에 상태에 남긴다.
재개 시 체인에 반영되지 않았으면:
- blockhash가 아직 유효하면 같은 바이트를 다시 보낸다
- 만료된 펀딩은 실패 (이체가 일어나지 않았으므로 새 sync를 시작한다)
- 만료된 업데이트는 버리고 서버에 다시 요청한다 (같은 펀딩, 같은 URI)
"""

import base64
import logging
from typing import Any, Callable, Optional

from src.core.errors import CompanionError, FundingError, InsufficientFundsError
from src.core.update.models import PipelineStage, PipelineState, stage_index
from src.services.api_client import CompanionApiClient
from src.services.chain.client import ChainClient
from src.services.chain.transactions import first_signature
from src.services.wallet import WalletSigner

logger = logging.getLogger(__name__)

TransitionCallback = Callable[[PipelineState], None]

# 펀딩 이체 수수료 여유분 (lamports)
FEE_BUFFER_LAMPORTS = 10_000


class SyncPipeline:
    """펀딩 → 업로드/업데이트 준비 → 업데이트 전송 → 검증"""

    def __init__(
        self,
        api: CompanionApiClient,
        chain: ChainClient,
        signer: WalletSigner,
        on_transition: Optional[TransitionCallback] = None,
    ) -> None:
        self._api = api
        self._chain = chain
        self._signer = signer
        self._on_transition = on_transition

    def start(self, asset_address: str) -> PipelineState:
        return PipelineState(
            wallet_address=self._signer.public_key, asset_address=asset_address
        )

    def run(self, state: PipelineState, companion_data: dict[str, Any]) -> PipelineState:
        """상태가 VERIFIED가 될 때까지 진행.

        실패하면 state를 FAILED로 바꿔 알린 뒤 예외를 다시 던진다.
        펀딩 키는 검증이 끝나야 지운다 (재시도에 필요).
        """
        if state.stage == PipelineStage.VERIFIED:
            return state
        if state.wallet_address != self._signer.public_key:
            raise CompanionError("Signer does not match the pipeline wallet")

        try:
            if state.funding_signature is None:
                self._fund(state)
            elif stage_index(state.resume_stage) < stage_index(
                PipelineStage.FUNDING_CONFIRMED
            ):
                self._resume_funding(state)

            if state.update_signature is not None and not self._land(
                state.update_signature,
                state.signed_update_transaction,
                state.update_last_valid_block_height,
            ):
                logger.info(
                    "Update %s expired before landing, requesting a new one",
                    state.update_signature,
                )
                state.clear_update()
                self._notify(state)

            if state.update_signature is None:
                self._update(state, companion_data)
            self._verify(state)
        except CompanionError as e:
            logger.warning("Sync pipeline failed at %s: %s", state.resume_stage.value, e.message)
            state.fail(e.message)
            self._notify(state)
            raise

        state.forget_funding_secret()
        self._notify(state)
        return state

    # === 단계 ===

    def _fund(self, state: PipelineState) -> None:
        quote = self._api.prepare_funding(state.wallet_address)
        state.funding_transaction = quote["fundingTransaction"]
        state.funding_wallet = quote["serverWallet"]
        state.funding_secret_key = quote["serverSecretKey"]
        state.estimated_cost = quote["estimatedCost"]
        self._transition(state, PipelineStage.FUNDING_PREPARED)

        required = int(state.estimated_cost) + FEE_BUFFER_LAMPORTS
        balance = self._chain.get_balance(state.wallet_address)
        if balance < required:
            raise InsufficientFundsError(
                "Insufficient SOL balance to fund the update. "
                f"Required: {required / 1e9:.4f} SOL, available: {balance / 1e9:.4f} SOL."
            )

        signed = self._signer.sign_transaction(state.funding_transaction)
        # 전송 전에 서명과 바이트를 기록해 재시도 시 두 번째 이체를 막는다
        state.funding_signature = first_signature(signed)
        state.signed_funding_transaction = base64.b64encode(signed).decode("ascii")
        state.funding_last_valid_block_height = int(quote["lastValidBlockHeight"])
        self._transition(state, PipelineStage.FUNDING_SUBMITTED)

        self._submit(state.funding_signature, signed, state.funding_last_valid_block_height)
        self._transition(state, PipelineStage.FUNDING_CONFIRMED)

    def _resume_funding(self, state: PipelineState) -> None:
        if not self._land(
            state.funding_signature,
            state.signed_funding_transaction,
            state.funding_last_valid_block_height,
        ):
            raise FundingError(
                "Funding transaction expired before landing. Start a new sync.",
                details=state.funding_signature,
            )
        self._await_funding(state)

    def _await_funding(self, state: PipelineState) -> None:
        """재개 시 펀딩 확정 여부만 확인한다."""
        status = self._api.check_funding_status(
            state.funding_signature, state.funding_wallet
        )
        if not status.get("funded"):
            raise FundingError(status.get("message") or "Funding not yet confirmed")
        self._transition(state, PipelineStage.FUNDING_CONFIRMED)

    def _update(self, state: PipelineState, companion_data: dict[str, Any]) -> None:
        if not state.funding_secret_key:
            raise FundingError("Funding wallet key is no longer available")

        prepared = self._api.prepare_update(
            asset_address=state.asset_address,
            companion_data=companion_data,
            payer_public_key=state.wallet_address,
            server_secret_key=state.funding_secret_key,
            funding_signature=state.funding_signature,
        )
        state.metadata_uri = prepared["metadataUri"]
        self._transition(state, PipelineStage.METADATA_UPLOADED)
        state.update_transaction = prepared["transaction"]
        self._transition(state, PipelineStage.UPDATE_TX_BUILT)

        signed = self._signer.sign_transaction(state.update_transaction)
        state.update_signature = first_signature(signed)
        state.signed_update_transaction = base64.b64encode(signed).decode("ascii")
        state.update_last_valid_block_height = int(prepared["lastValidBlockHeight"])
        self._transition(state, PipelineStage.UPDATE_TX_SUBMITTED)

        self._submit(state.update_signature, signed, state.update_last_valid_block_height)

    def _verify(self, state: PipelineState) -> None:
        self._api.verify_update(
            state.update_signature, state.asset_address, state.funding_signature
        )
        self._transition(state, PipelineStage.VERIFIED)

    # === 내부 ===

    def _submit(self, signature: str, signed: bytes, last_valid_block_height: int) -> None:
        self._chain.send_raw_transaction(signed)
        self._chain.confirm_transaction(signature, last_valid_block_height)

    def _land(
        self,
        signature: str,
        signed: Optional[str],
        last_valid_block_height: Optional[int],
    ) -> bool:
        """이미 전송한 트랜잭션을 반영시킨다. 반영될 수 없으면 False.

        상태가 없고 blockhash가 아직 유효하면 저장된 바이트를 그대로 다시 보낸다.
        """
        status = self._chain.get_signature_status(signature)
        if status is not None:
            if status.err is not None:
                logger.warning("Transaction %s failed on chain: %s", signature, status.err)
                return False
            if not status.is_confirmed and last_valid_block_height is not None:
                self._chain.confirm_transaction(signature, last_valid_block_height)
            return True

        if signed is None or last_valid_block_height is None:
            return False
        if self._chain.get_block_height() > last_valid_block_height:
            return False

        logger.info("Resending transaction %s", signature)
        self._submit(signature, base64.b64decode(signed), last_valid_block_height)
        return True

    def _transition(self, state: PipelineState, stage: PipelineStage) -> None:
        # 재개 중에는 이미 지난 단계를 다시 밟아도 뒤로 가지 않는다
        if stage_index(stage) < stage_index(state.resume_stage):
            stage = state.resume_stage
        state.advance(stage)
        logger.info("Sync pipeline %s → %s", state.asset_address, stage.value)
        self._notify(state)

    def _notify(self, state: PipelineState) -> None:
        if self._on_transition is not None:
            self._on_transition(state)
