"""Abstract base class for transaction explainer providers."""

from abc import ABC, abstractmethod
from typing import Any, Optional

from src.core.transaction.models import Explanation


class ExplainerProvider(ABC):
    """Abstract base class for transaction explainers.

    An explainer turns a parsed transaction into a human-readable
    Explanation. Returning None means "no explanation"; the classifier
    then keeps the heuristic result and default texts.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the provider name."""
        ...

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the provider is available and configured."""
        ...

    @abstractmethod
    def explain(
        self, transaction: dict[str, Any], cluster: str = "devnet"
    ) -> Optional[Explanation]:
        """Explain a parsed transaction.

        Args:
            transaction: Parsed transaction (jsonParsed encoding).
            cluster: Network name the transaction lives on.

        Returns:
            Cleaned Explanation, or None if the provider had nothing to say.

        Raises:
            RuntimeError: If the provider call fails.
        """
        ...
