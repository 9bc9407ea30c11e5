"""클라이언트 측 지갑 서명자"""

from typing import Protocol

from solders.keypair import Keypair

from src.services.chain.transactions import sign_transaction


class WalletSigner(Protocol):
    """지갑 하나로 base64 트랜잭션에 서명을 더할 수 있는 것"""

    @property
    def public_key(self) -> str: ...

    def sign_transaction(self, encoded: str) -> bytes: ...


class KeypairSigner:
    """로컬 keypair 서명자 (스크립트, 테스트용)"""

    def __init__(self, keypair: Keypair) -> None:
        self._keypair = keypair

    @property
    def public_key(self) -> str:
        return str(self._keypair.pubkey())

    def sign_transaction(self, encoded: str) -> bytes:
        return sign_transaction(encoded, self._keypair)
