"""Gemini-backed transaction explainer."""

import json
import re
from typing import Any, Optional

import google.generativeai as genai

from src.core.logging import get_logger
from src.core.transaction.models import Explanation
from src.core.transaction.rules import parse_explanation_content
from src.services.explainer.base import ExplainerProvider

logger = get_logger(__name__)

SYSTEM_PROMPT = (
    "You explain Solana transactions to wallet owners. "
    "Reply with a single JSON object: "
    '{"header": {"transactionType": str}, "summary": str, '
    '"keyPoints": [str], "additionalContext": str}. '
    "Mention words like burn, mint, claim, swap, stake, transfer or NFT "
    "when they describe what happened."
)

JSON_BLOCK = re.compile(r"```json\s*(.*?)\s*```", re.DOTALL)


def _parse_reply(raw: str) -> Optional[dict[str, Any]]:
    """Whole-reply JSON first, then a ```json fenced block."""
    candidates = [raw.strip()]
    match = JSON_BLOCK.search(raw)
    if match:
        candidates.append(match.group(1))
    for text in candidates:
        try:
            parsed = json.loads(text)
        except (json.JSONDecodeError, TypeError):
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


class GeminiExplainer(ExplainerProvider):
    """Explainer using Google Gemini with a structured JSON prompt."""

    def __init__(self, api_key: str, model: str = "gemini-2.0-flash") -> None:
        self._api_key = api_key
        self._model_name = model
        self._model = None

        if self._api_key:
            genai.configure(api_key=self._api_key)
            self._model = genai.GenerativeModel(
                self._model_name, system_instruction=SYSTEM_PROMPT
            )
            logger.info("GeminiExplainer initialized with model: %s", self._model_name)

    @property
    def name(self) -> str:
        """Return the provider name."""
        return "gemini"

    def is_available(self) -> bool:
        return bool(self._api_key) and self._model is not None

    def explain(
        self, transaction: dict[str, Any], cluster: str = "devnet"
    ) -> Optional[Explanation]:
        if not self.is_available():
            raise RuntimeError("GeminiExplainer is not available. Check API key.")

        assert self._model is not None

        prompt = (
            f"Cluster: {cluster}\n"
            f"Transaction:\n{json.dumps(transaction, default=str)[:20000]}"
        )
        generation_config = genai.types.GenerationConfig(max_output_tokens=600)
        try:
            response = self._model.generate_content(
                prompt, generation_config=generation_config
            )
            raw: str = response.text
        except Exception as e:
            logger.error("Gemini API error: %s", e)
            raise RuntimeError(f"Gemini API error: {e}") from e

        parsed = _parse_reply(raw)
        if parsed is None:
            logger.warning("Gemini reply is not JSON, using it as markdown")
            return parse_explanation_content(raw)
        return parse_explanation_content(parsed)
