"""companion API HTTP 클라이언트 (sync 흐름의 클라이언트 쪽)"""

from typing import Any, Optional

import httpx

from src.core.errors import CompanionError
from src.core.logging import get_logger

logger = get_logger(__name__)


class ApiError(CompanionError):
    """companion API의 2xx 아닌 응답"""

    def __init__(
        self, message: str, status_code: int, details: Optional[Any] = None
    ) -> None:
        super().__init__(message, details)
        self.status_code = status_code


class CompanionApiClient:
    """`/api` 라우트 얇은 래퍼

    모든 메서드는 디코딩한 JSON 본문을 돌려준다.
    오류 본문(`{"error": ..., "details": ...}`)은 ApiError로 던진다.
    """

    def __init__(
        self,
        base_url: str,
        http: Optional[httpx.Client] = None,
        timeout: float = 30.0,
    ) -> None:
        self._http = http or httpx.Client(base_url=base_url, timeout=timeout)

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self._http.request(method, f"/api{path}", **kwargs)
        except httpx.HTTPError as e:
            raise ApiError(f"Request to {path} failed: {e}", status_code=0) from e

        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.is_error:
            message = body.get("error") if isinstance(body, dict) else None
            logger.warning("API %s %s failed (%d): %s", method, path, response.status_code, message)
            raise ApiError(
                message or response.reason_phrase,
                status_code=response.status_code,
                details=body.get("details") if isinstance(body, dict) else None,
            )
        return body

    # === 조회 ===

    def game_config(self) -> dict[str, Any]:
        return self._request("GET", "/game-config")

    def experience_sync(
        self,
        wallet: str,
        last_updated: Optional[str] = None,
        date_of_birth: Optional[str] = None,
    ) -> dict[str, Any]:
        params = {"wallet": wallet}
        if last_updated:
            params["lastUpdated"] = last_updated
        if date_of_birth:
            params["dateOfBirth"] = date_of_birth
        return self._request("GET", "/experience-sync", params=params)

    def transactions(self, wallet: str) -> dict[str, Any]:
        return self._request("GET", "/transactions", params={"wallet": wallet})

    def check_companion(self, wallet: str) -> dict[str, Any]:
        return self._request("GET", "/check-companion", params={"walletAddress": wallet})

    def get_companion(self, wallet: str) -> dict[str, Any]:
        return self._request("GET", "/get-companion", params={"walletAddress": wallet})

    def transaction_details(self, signature: str, wallet: str) -> dict[str, Any]:
        return self._request(
            "GET", "/transaction-details", params={"signature": signature, "wallet": wallet}
        )

    # === 업데이트 흐름 ===

    def prepare_funding(self, wallet_address: str) -> dict[str, Any]:
        return self._request(
            "GET", "/update-companion", params={"walletAddress": wallet_address}
        )

    def check_funding_status(
        self, funding_signature: str, server_wallet: str
    ) -> dict[str, Any]:
        return self._request(
            "POST",
            "/check-funding-status",
            json={"fundingSignature": funding_signature, "serverWallet": server_wallet},
        )

    def prepare_update(
        self,
        asset_address: str,
        companion_data: dict[str, Any],
        payer_public_key: str,
        server_secret_key: str,
        funding_signature: str,
    ) -> dict[str, Any]:
        return self._request(
            "POST",
            "/update-companion",
            json={
                "assetAddress": asset_address,
                "companionData": companion_data,
                "payerPublicKey": payer_public_key,
                "serverSecretKey": server_secret_key,
                "fundingSignature": funding_signature,
            },
        )

    def verify_update(
        self,
        signature: str,
        asset_address: str,
        funding_signature: Optional[str] = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"signature": signature, "assetAddress": asset_address}
        if funding_signature:
            body["fundingSignature"] = funding_signature
        return self._request("PUT", "/update-companion", json=body)

    def check_upload_status(self, metadata_uri: str) -> dict[str, Any]:
        return self._request(
            "POST", "/check-upload-status", json={"metadataUri": metadata_uri}
        )
