"""스토리지 Service: 비용 견적, fallback 업로드, 게시 확인, 문서 조회"""

import json
from typing import Any

import httpx
from solders.keypair import Keypair

from src.core.errors import StorageError
from src.core.logging import get_logger
from src.services.storage.base import MetadataUploader
from src.services.storage.irys import IrysNode

logger = get_logger(__name__)

JSON_CONTENT_TYPE = "application/json"


class StorageService:
    """메타데이터 문서를 스토리지 네트워크에 게시한다"""

    def __init__(
        self,
        node: IrysNode,
        gateway_url: str,
        primary: MetadataUploader,
        fallback: MetadataUploader,
        http: httpx.Client,
    ) -> None:
        self._node = node
        self._gateway_url = gateway_url.rstrip("/")
        self._primary = primary
        self._fallback = fallback
        self._http = http

    def uri_for(self, content_id: str) -> str:
        return f"{self._gateway_url}/{content_id}"

    def estimate_cost(self, size: int) -> int:
        """size 바이트 저장에 필요한 lamports"""
        price = self._node.price(size)
        logger.info("Storage price for %d bytes: %d lamports", size, price)
        return price

    def upload_json(self, document: dict[str, Any], payer: Keypair) -> str:
        """JSON 문서를 올리고 게이트웨이 URI 반환.

        기본 업로더가 실패하면 fallback 업로더로 한 번 더 시도한다.
        둘 다 실패하면 StorageError.
        """
        data = json.dumps(document, separators=(",", ":")).encode("utf-8")
        try:
            content_id = self._primary.upload(data, JSON_CONTENT_TYPE, payer)
        except StorageError as primary_error:
            logger.warning(
                "%s uploader failed, falling back to %s: %s",
                self._primary.name,
                self._fallback.name,
                primary_error.message,
            )
            try:
                content_id = self._fallback.upload(data, JSON_CONTENT_TYPE, payer)
            except StorageError as fallback_error:
                raise StorageError(
                    "Metadata upload failed on both uploaders",
                    details=f"{primary_error.message}; {fallback_error.message}",
                ) from fallback_error

        uri = self.uri_for(content_id)
        logger.info("Metadata uploaded: %s", uri)
        return uri

    def is_available(self, uri: str) -> tuple[bool, str]:
        """올린 문서를 게이트웨이에서 읽을 수 있는지"""
        try:
            response = self._http.get(uri)
        except httpx.HTTPError as e:
            logger.warning("Metadata fetch failed for %s: %s", uri, e)
            return False, "Error accessing metadata"

        if response.status_code != 200:
            return False, f"Metadata not yet accessible (status: {response.status_code})"
        try:
            response.json()
        except ValueError:
            return False, "Metadata is not valid JSON"
        return True, "Metadata is accessible"

    def fetch_json(self, uri: str) -> dict[str, Any]:
        """게시된 메타데이터 문서 조회.

        Raises:
            StorageError: 조회 실패 / JSON 객체가 아님
        """
        try:
            response = self._http.get(uri)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise StorageError("Failed to fetch companion metadata", details=str(e)) from e
        try:
            document = response.json()
        except ValueError as e:
            raise StorageError("Companion metadata is not valid JSON", details=uri) from e
        if not isinstance(document, dict):
            raise StorageError("Companion metadata is not a JSON object", details=uri)
        return document
