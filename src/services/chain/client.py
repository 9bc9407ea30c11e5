"""Solana RPC 클라이언트 래퍼

프로세스당 한 번 생성되어 서비스에 주입된다 (모듈 전역 캐시 없음).
solana-py 응답(solders 타입)을 평범한 dataclass / dict로 바꿔 돌려준다.

모든 읽기 호출: 클라이언트 timeout + 최대 max_attempts회 시도.
전송(send)은 한 번만 시도한다.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

from solana.rpc.api import Client
from solana.rpc.commitment import Confirmed
from solana.rpc.types import MemcmpOpts, TxOpts
from solders.pubkey import Pubkey
from solders.signature import Signature

from src.core.errors import ChainError, InsufficientFundsError, ValidationError
from src.core.transaction.models import SignatureInfo

logger = logging.getLogger(__name__)

T = TypeVar("T")

RENT_SHORTFALL_MARKER = "insufficient funds for rent"
RENT_SHORTFALL_MESSAGE = (
    "Transaction failed: Not enough SOL to cover rent for new account creation. "
    "Please add more SOL to your wallet."
)


@dataclass(frozen=True)
class SignatureStatus:
    confirmation_status: Optional[str]  # "processed" | "confirmed" | "finalized"
    err: Optional[str] = None

    @property
    def is_confirmed(self) -> bool:
        return self.err is None and self.confirmation_status in (
            "confirmed",
            "finalized",
        )


@dataclass(frozen=True)
class BlockhashInfo:
    blockhash: str
    last_valid_block_height: int


@dataclass(frozen=True)
class AccountData:
    owner: str
    data: bytes
    lamports: int = 0


def parse_pubkey(address: str, field_name: str = "address") -> Pubkey:
    """base58 공개키 파싱. 실패 시 ValidationError (400)."""
    try:
        return Pubkey.from_string(address)
    except (ValueError, TypeError) as e:
        raise ValidationError(f"Invalid {field_name}: {address}") from e


def parse_signature(signature: str) -> Signature:
    try:
        return Signature.from_string(signature)
    except (ValueError, TypeError) as e:
        raise ValidationError(f"Invalid transaction signature: {signature}") from e


def _status_name(status: Any) -> Optional[str]:
    """TransactionConfirmationStatus.Confirmed → "confirmed"."""
    if status is None:
        return None
    return str(status).rsplit(".", 1)[-1].lower()


def normalize_parsed_transaction(raw: dict[str, Any]) -> dict[str, Any]:
    """solders to_json 형식을 RPC jsonParsed 형식으로 평탄화.

    solders: {"slot", "transaction": {"transaction": {...}, "meta": {...}}, "blockTime"}
    RPC:     {"slot", "transaction": {...}, "meta": {...}, "blockTime"}
    """
    inner = raw.get("transaction")
    if isinstance(inner, dict) and "meta" in inner and "transaction" in inner:
        flat = {k: v for k, v in raw.items() if k != "transaction"}
        flat["transaction"] = inner["transaction"]
        flat["meta"] = inner["meta"]
        if "version" in inner:
            flat["version"] = inner["version"]
        return flat
    return raw


class ChainClient:
    """Solana RPC 접근의 단일 진입점"""

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 15.0,
        max_attempts: int = 2,
        client: Optional[Client] = None,
    ) -> None:
        self._rpc_url = rpc_url
        self._max_attempts = max(1, max_attempts)
        self._client = client or Client(rpc_url, commitment=Confirmed, timeout=timeout)
        logger.info("ChainClient initialized: %s", rpc_url)

    @property
    def rpc_url(self) -> str:
        return self._rpc_url

    def _call(self, operation: str, fn: Callable[[], T], attempts: Optional[int] = None) -> T:
        attempts = attempts or self._max_attempts
        last_error: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            try:
                return fn()
            except Exception as e:
                last_error = e
                logger.warning(
                    "RPC %s failed (attempt %d/%d): %s", operation, attempt, attempts, e
                )
        raise ChainError(f"RPC {operation} failed: {last_error}") from last_error

    # === 읽기 ===

    def get_balance(self, address: str) -> int:
        """lamports 잔액"""
        pubkey = parse_pubkey(address)
        resp = self._call(
            "getBalance", lambda: self._client.get_balance(pubkey, commitment=Confirmed)
        )
        return int(resp.value)

    def get_signature_status(self, signature: str) -> Optional[SignatureStatus]:
        """서명 상태. 노드가 모르는 서명이면 None."""
        sig = parse_signature(signature)
        resp = self._call(
            "getSignatureStatuses",
            lambda: self._client.get_signature_statuses(
                [sig], search_transaction_history=True
            ),
        )
        status = resp.value[0] if resp.value else None
        if status is None:
            return None
        return SignatureStatus(
            confirmation_status=_status_name(status.confirmation_status),
            err=str(status.err) if status.err is not None else None,
        )

    def get_parsed_transaction(self, signature: str) -> Optional[dict[str, Any]]:
        """getTransaction(jsonParsed) 결과 dict. 없으면 None."""
        sig = parse_signature(signature)
        resp = self._call(
            "getTransaction",
            lambda: self._client.get_transaction(
                sig,
                encoding="jsonParsed",
                commitment=Confirmed,
                max_supported_transaction_version=0,
            ),
        )
        if resp.value is None:
            return None
        return normalize_parsed_transaction(json.loads(resp.value.to_json()))

    def get_signatures_for_address(self, address: str, limit: int) -> list[SignatureInfo]:
        """최신순 서명 목록 (체인 반환 순서 유지)."""
        pubkey = parse_pubkey(address, "wallet address")
        resp = self._call(
            "getSignaturesForAddress",
            lambda: self._client.get_signatures_for_address(
                pubkey, limit=limit, commitment=Confirmed
            ),
        )
        return [
            SignatureInfo(
                signature=str(item.signature),
                slot=int(item.slot),
                block_time=item.block_time,
                err=str(item.err) if item.err is not None else None,
            )
            for item in resp.value
        ]

    def get_latest_blockhash(self) -> BlockhashInfo:
        resp = self._call(
            "getLatestBlockhash",
            lambda: self._client.get_latest_blockhash(commitment=Confirmed),
        )
        return BlockhashInfo(
            blockhash=str(resp.value.blockhash),
            last_valid_block_height=int(resp.value.last_valid_block_height),
        )

    def get_block_height(self) -> int:
        """현재 블록 높이. blockhash 만료 판정용."""
        resp = self._call(
            "getBlockHeight",
            lambda: self._client.get_block_height(commitment=Confirmed),
        )
        return int(resp.value)

    def get_program_accounts(
        self, program_id: str, filters: list[MemcmpOpts]
    ) -> list[tuple[str, AccountData]]:
        """프로그램 소유 계정 중 memcmp 필터에 맞는 것 (주소, 데이터)."""
        program = parse_pubkey(program_id, "program id")
        resp = self._call(
            "getProgramAccounts",
            lambda: self._client.get_program_accounts(
                program, commitment=Confirmed, encoding="base64", filters=filters
            ),
        )
        return [
            (
                str(keyed.pubkey),
                AccountData(
                    owner=str(keyed.account.owner),
                    data=bytes(keyed.account.data),
                    lamports=keyed.account.lamports,
                ),
            )
            for keyed in resp.value
        ]

    def get_account_data(self, address: str) -> Optional[AccountData]:
        pubkey = parse_pubkey(address)
        resp = self._call(
            "getAccountInfo",
            lambda: self._client.get_account_info(pubkey, commitment=Confirmed),
        )
        account = resp.value
        if account is None:
            return None
        return AccountData(
            owner=str(account.owner), data=bytes(account.data), lamports=account.lamports
        )

    # === 전송 ===

    def send_raw_transaction(self, transaction: bytes) -> str:
        """서명된 트랜잭션 전송. rent 부족은 InsufficientFundsError."""
        try:
            resp = self._client.send_raw_transaction(
                transaction,
                opts=TxOpts(skip_preflight=False, preflight_commitment=Confirmed),
            )
        except Exception as e:
            if RENT_SHORTFALL_MARKER in str(e).lower():
                raise InsufficientFundsError(RENT_SHORTFALL_MESSAGE, details=str(e)) from e
            raise ChainError(f"Failed to submit transaction: {e}") from e
        return str(resp.value)

    def confirm_transaction(self, signature: str, last_valid_block_height: int) -> None:
        """blockhash 유효 높이까지 confirmed 대기. 고정 sleep이 아니다."""
        sig = parse_signature(signature)
        try:
            self._client.confirm_transaction(
                sig,
                commitment=Confirmed,
                last_valid_block_height=last_valid_block_height,
            )
        except Exception as e:
            raise ChainError(f"Transaction {signature} was not confirmed: {e}") from e
