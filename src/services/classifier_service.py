"""트랜잭션 분류 Service: 체인 조회 + 휴리스틱 + 설명 보강

설명 보강 실패는 로그만 남기고 기본 텍스트로 진행한다.
분류 자체가 실패하면 classify_safe가 "Unknown" 결과를 돌려준다.
"""

import logging
from typing import Any, Optional

from src.core.errors import CompanionError, NotFoundError
from src.core.transaction.heuristics import determine_initial_action
from src.core.transaction.models import ClassifiedTransaction, Explanation
from src.core.transaction.rules import action_from_explanation
from src.services.chain.client import ChainClient
from src.services.explainer.base import ExplainerProvider

logger = logging.getLogger(__name__)


class ClassifierService:
    """서명 하나 → ClassifiedTransaction"""

    def __init__(
        self,
        chain: ChainClient,
        explainer: ExplainerProvider,
        cluster: str = "devnet",
    ) -> None:
        self._chain = chain
        self._explainer = explainer
        self._cluster = cluster

    def classify(self, signature: str, wallet_address: str) -> ClassifiedTransaction:
        """트랜잭션 조회 후 분류.

        Raises:
            NotFoundError: 트랜잭션이 체인에 없음
            ChainError: RPC 실패
        """
        transaction = self._chain.get_parsed_transaction(signature)
        if transaction is None:
            raise NotFoundError("Transaction not found", details=signature)
        return self.classify_transaction(signature, transaction, wallet_address)

    def classify_transaction(
        self, signature: str, transaction: dict[str, Any], wallet_address: str
    ) -> ClassifiedTransaction:
        """이미 조회한 트랜잭션 분류. 설명이 있으면 휴리스틱을 덮어쓴다."""
        action = determine_initial_action(transaction, wallet_address)
        explanation = self._explain(signature, transaction)
        if explanation is None:
            return ClassifiedTransaction(signature=signature, action=action)

        return ClassifiedTransaction(
            signature=signature,
            action=action_from_explanation(action, explanation),
            type=explanation.type,
            summary=explanation.summary,
            key_points=explanation.key_points,
            additional_context=explanation.additional_context,
        )

    def classify_safe(self, signature: str, wallet_address: str) -> ClassifiedTransaction:
        """XP 계산용. 어떤 실패든 Unknown 결과로 흡수한다."""
        try:
            return self.classify(signature, wallet_address)
        except CompanionError as e:
            logger.warning("Classification failed for %s: %s", signature, e.message)
        except Exception:
            logger.exception("Unexpected classification failure for %s", signature)
        return ClassifiedTransaction.unknown(signature)

    def _explain(
        self, signature: str, transaction: dict[str, Any]
    ) -> Optional[Explanation]:
        if not self._explainer.is_available():
            return None
        try:
            return self._explainer.explain(transaction, cluster=self._cluster)
        except Exception as e:
            logger.warning(
                "Explainer %s failed for %s: %s", self._explainer.name, signature, e
            )
            return None
