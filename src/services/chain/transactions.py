"""트랜잭션 생성: 펀딩 이체, Core 업데이트

생성된 트랜잭션은 base64로 직렬화해 클라이언트가 서명/전송한다.
"""

from __future__ import annotations

import base64
import logging
from typing import Optional

from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction

from src.services.chain.mpl_core import update_v1

logger = logging.getLogger(__name__)


def encode_transaction(transaction: Transaction) -> str:
    return base64.b64encode(bytes(transaction)).decode("ascii")


def decode_transaction(encoded: str) -> Transaction:
    return Transaction.from_bytes(base64.b64decode(encoded))


def _transfer_message(
    sender: Pubkey, recipient: Pubkey, lamports: int, blockhash: str
) -> Message:
    instruction = transfer(
        TransferParams(from_pubkey=sender, to_pubkey=recipient, lamports=lamports)
    )
    return Message.new_with_blockhash([instruction], sender, Hash.from_string(blockhash))


def build_funding_transaction(
    payer: Pubkey, funding_wallet: Pubkey, lamports: int, blockhash: str
) -> Transaction:
    """사용자 → 펀딩 지갑 SOL 이체. 서명 없음, 사용자가 fee payer."""
    return Transaction.new_unsigned(
        _transfer_message(payer, funding_wallet, lamports, blockhash)
    )


def build_signed_transfer(
    sender: Keypair, recipient: Pubkey, lamports: int, blockhash: str
) -> bytes:
    """sender가 fee payer이자 유일한 서명자인 이체. 전송용 바이트."""
    message = _transfer_message(sender.pubkey(), recipient, lamports, blockhash)
    transaction = Transaction([sender], message, Hash.from_string(blockhash))
    return bytes(transaction)


def build_update_transaction(
    asset: Pubkey,
    payer: Pubkey,
    authority: Keypair,
    name: str,
    uri: str,
    blockhash: str,
    collection: Optional[Pubkey] = None,
) -> Transaction:
    """Core UpdateV1. 서비스 authority가 먼저 부분 서명하고,
    fee payer인 사용자가 이어서 서명한다."""
    instruction = update_v1(
        asset=asset,
        payer=payer,
        authority=authority.pubkey(),
        new_name=name,
        new_uri=uri,
        collection=collection,
    )
    recent = Hash.from_string(blockhash)
    message = Message.new_with_blockhash([instruction], payer, recent)
    transaction = Transaction.new_unsigned(message)
    transaction.partial_sign([authority], recent)
    logger.debug("Update transaction built: asset=%s, uri=%s", asset, uri)
    return transaction


def sign_transaction(encoded: str, signer: Keypair) -> bytes:
    """base64 트랜잭션에 서명을 더해 전송용 바이트로."""
    transaction = decode_transaction(encoded)
    transaction.partial_sign([signer], transaction.message.recent_blockhash)
    return bytes(transaction)


def first_signature(raw: bytes) -> str:
    """전송 전 서명된 트랜잭션의 fee payer 서명 (= 트랜잭션 id)."""
    return str(Transaction.from_bytes(raw).signatures[0])
