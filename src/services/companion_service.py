"""동행 조회 Service: 지갑이 가진 동행 에셋 + 게시된 메타데이터

에셋 검색은 getProgramAccounts memcmp 필터로 한다:
- offset 0: AssetV1 키
- offset 1: 소유자
- offset 33: update authority = Collection(컬렉션 주소). 컬렉션 설정이 없으면 생략
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

import base58
from solana.rpc.types import MemcmpOpts
from solders.pubkey import Pubkey

from src.core.companion.metadata import build_metadata_document, companion_from_metadata
from src.core.errors import NotFoundError, StorageError
from src.services.chain.client import ChainClient, parse_pubkey
from src.services.chain.mpl_core import (
    ASSET_OWNER_OFFSET,
    ASSET_UPDATE_AUTHORITY_OFFSET,
    AUTHORITY_COLLECTION,
    KEY_ASSET_V1,
    MPL_CORE_PROGRAM_ID,
    CoreAsset,
    DecodeError,
    decode_asset,
)
from src.services.storage.service import StorageService

logger = logging.getLogger(__name__)


def _memcmp(offset: int, raw: bytes) -> MemcmpOpts:
    return MemcmpOpts(offset=offset, bytes=base58.b58encode(raw).decode("ascii"))


@dataclass(frozen=True)
class CompanionView:
    asset: CoreAsset
    document: dict[str, Any]

    def to_response(self) -> dict[str, Any]:
        return {
            "success": True,
            "assetAddress": str(self.asset.address),
            "metadataUri": self.asset.uri,
            "companion": self.document,
        }


class CompanionService:
    def __init__(
        self,
        chain: ChainClient,
        storage: StorageService,
        collection_address: Optional[str] = None,
    ) -> None:
        self._chain = chain
        self._storage = storage
        self._collection_address = collection_address

    def find_assets(self, wallet_address: str) -> list[CoreAsset]:
        """wallet이 소유한 동행 컬렉션 에셋. 주소 순으로 정렬."""
        owner = parse_pubkey(wallet_address, "wallet address")
        filters = [
            _memcmp(0, bytes([KEY_ASSET_V1])),
            _memcmp(ASSET_OWNER_OFFSET, bytes(owner)),
        ]
        if self._collection_address:
            collection = parse_pubkey(self._collection_address, "collection address")
            filters.append(
                _memcmp(
                    ASSET_UPDATE_AUTHORITY_OFFSET,
                    bytes([AUTHORITY_COLLECTION]) + bytes(collection),
                )
            )

        assets = []
        for address, account in self._chain.get_program_accounts(
            str(MPL_CORE_PROGRAM_ID), filters
        ):
            try:
                assets.append(decode_asset(Pubkey.from_string(address), account.data))
            except DecodeError as e:
                logger.warning("Skipping undecodable asset %s: %s", address, e)
        assets.sort(key=lambda asset: str(asset.address))
        return assets

    def check_companion(self, wallet_address: str) -> dict[str, Any]:
        assets = self.find_assets(wallet_address)
        logger.debug("Wallet %s owns %d companion(s)", wallet_address, len(assets))
        return {"hasCompanion": bool(assets), "companionCount": len(assets)}

    def get_companion(self, wallet_address: str) -> CompanionView:
        """wallet의 첫 동행과 게시된 메타데이터.

        Raises:
            NotFoundError: 동행 에셋 없음
            StorageError: 메타데이터 조회 실패 / 형식 오류
        """
        assets = self.find_assets(wallet_address)
        if not assets:
            raise NotFoundError("Companion not found", details=wallet_address)

        asset = assets[0]
        document = self._storage.fetch_json(asset.uri)
        try:
            companion = companion_from_metadata(document)
        except ValueError as e:
            raise StorageError("Companion metadata is invalid", details=str(e)) from e
        return CompanionView(asset=asset, document=build_metadata_document(companion))
