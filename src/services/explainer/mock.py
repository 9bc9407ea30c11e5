"""Mock explainer for testing and fallback."""

from typing import Any, Optional

from src.core.transaction.models import Explanation
from src.services.explainer.base import ExplainerProvider


class MockExplainer(ExplainerProvider):
    """Explainer that never explains.

    Used for testing and as a fallback when no API key is configured.
    A fixed explanation can be injected for tests.
    """

    def __init__(self, explanation: Optional[Explanation] = None) -> None:
        self._explanation = explanation

    @property
    def name(self) -> str:
        """Return the provider name."""
        return "mock"

    def is_available(self) -> bool:
        """Mock is always available."""
        return True

    def explain(
        self, transaction: dict[str, Any], cluster: str = "devnet"
    ) -> Optional[Explanation]:
        return self._explanation
