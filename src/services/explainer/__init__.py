"""Transaction explainer providers."""

from src.services.explainer.base import ExplainerProvider
from src.services.explainer.factory import get_explainer
from src.services.explainer.gemini import GeminiExplainer
from src.services.explainer.helius import HeliusExplainer
from src.services.explainer.mock import MockExplainer

__all__ = [
    "ExplainerProvider",
    "GeminiExplainer",
    "HeliusExplainer",
    "MockExplainer",
    "get_explainer",
]
