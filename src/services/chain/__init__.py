"""Solana 체인 접근 모듈."""

from src.services.chain.client import (
    AccountData,
    BlockhashInfo,
    ChainClient,
    SignatureStatus,
    parse_pubkey,
    parse_signature,
)

__all__ = [
    "ChainClient",
    "AccountData",
    "BlockhashInfo",
    "SignatureStatus",
    "parse_pubkey",
    "parse_signature",
]
