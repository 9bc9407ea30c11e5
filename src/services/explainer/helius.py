"""Helius AI transaction explainer."""

from typing import Any, Optional

import httpx

from src.core.logging import get_logger
from src.core.transaction.models import Explanation
from src.core.transaction.rules import parse_explanation_content
from src.services.explainer.base import ExplainerProvider

logger = get_logger(__name__)


class HeliusExplainer(ExplainerProvider):
    """Explainer backed by the Helius transaction explainer API."""

    def __init__(
        self,
        api_key: str,
        url: str,
        http: Optional[httpx.Client] = None,
        timeout: float = 15.0,
    ) -> None:
        self._api_key = api_key
        self._url = url
        self._http = http or httpx.Client(timeout=timeout)

    @property
    def name(self) -> str:
        """Return the provider name."""
        return "helius"

    def is_available(self) -> bool:
        return bool(self._api_key)

    def explain(
        self, transaction: dict[str, Any], cluster: str = "devnet"
    ) -> Optional[Explanation]:
        """POST the parsed transaction and parse the `content` field.

        Raises:
            RuntimeError: If the API call fails.
        """
        if not self.is_available():
            raise RuntimeError("HeliusExplainer is not available. Check API key.")

        try:
            response = self._http.post(
                self._url,
                json={"transaction": transaction, "cluster": cluster},
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Helius explainer error: %s", e)
            raise RuntimeError(f"Helius explainer error: {e}") from e

        if not isinstance(data, dict):
            return None
        return parse_explanation_content(data.get("content"))
