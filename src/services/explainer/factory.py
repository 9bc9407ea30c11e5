"""Factory for creating explainer provider instances."""

from typing import Optional

from src.config import settings
from src.core.logging import get_logger
from src.services.explainer.base import ExplainerProvider
from src.services.explainer.gemini import GeminiExplainer
from src.services.explainer.helius import HeliusExplainer
from src.services.explainer.mock import MockExplainer

logger = get_logger(__name__)


def get_explainer(provider_name: Optional[str] = None) -> ExplainerProvider:
    """Get an explainer instance.

    Args:
        provider_name: Optional provider name. If not specified,
                      uses EXPLAINER_PROVIDER from config.

    Returns:
        An ExplainerProvider instance. Missing keys fall back to MockExplainer.
    """
    name = provider_name or settings.EXPLAINER_PROVIDER

    if name == "mock":
        logger.debug("Using MockExplainer")
        return MockExplainer()

    if name == "helius":
        if settings.HELIUS_API_KEY:
            logger.debug("Using HeliusExplainer")
            return HeliusExplainer(
                api_key=settings.HELIUS_API_KEY,
                url=settings.HELIUS_EXPLAINER_URL,
                timeout=settings.RPC_TIMEOUT_SECONDS,
            )
        logger.warning("HELIUS_API_KEY not set, falling back to MockExplainer")
        return MockExplainer()

    if name == "gemini":
        if settings.AI_API_KEY:
            model = settings.AI_MODEL or "gemini-2.0-flash"
            logger.debug("Using GeminiExplainer with model: %s", model)
            return GeminiExplainer(api_key=settings.AI_API_KEY, model=model)
        logger.warning("AI_API_KEY not set, falling back to MockExplainer")
        return MockExplainer()

    logger.warning("Unknown explainer '%s', falling back to MockExplainer", name)
    return MockExplainer()
