"""경험치 Service: sync 가능 판정 + 최근 트랜잭션 XP 견적

sync 제한은 core.sync_gate.can_sync 한 곳에서만 판정한다.
견적은 지갑 단위로 잠시 캐시하고, 아래 이벤트를 받으면 버린다.
- TRANSACTIONS_REFRESHED: 새 트랜잭션 목록 조회
- COMPANION_SYNCED: 업데이트 검증 완료
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Callable, Optional

from src.core.event_bus import EventBus, WalletEvent
from src.core.event_types import EventTypes
from src.core.sync_gate import can_sync
from src.core.timestamps import Timestamp, parse_timestamp, to_utc, utc_now
from src.core.transaction.experience import compute_xp
from src.core.transaction.models import (
    ClassifiedTransaction,
    ExperienceQuote,
    SignatureInfo,
)
from src.services.chain.client import ChainClient, parse_pubkey
from src.services.classifier_service import ClassifierService

logger = logging.getLogger(__name__)

QUOTE_CACHE_TTL = timedelta(seconds=60)


def select_window(
    signatures: list[SignatureInfo],
    now: datetime,
    last_updated: Optional[datetime],
    window: timedelta,
) -> list[SignatureInfo]:
    """XP 대상 서명. 체인 반환 순서 유지.

    block_time이 없으면 제외. now - window 이후 + last_updated 초과만 남긴다.
    """
    window_start = now - window
    selected = []
    for info in signatures:
        if info.block_time is None:
            continue
        block_time = datetime.fromtimestamp(info.block_time, tz=now.tzinfo)
        if block_time < window_start:
            continue
        if last_updated is not None and block_time <= last_updated:
            continue
        selected.append(info)
    return selected


class ExperienceService:
    """지갑별 XP 견적"""

    def __init__(
        self,
        chain: ChainClient,
        classifier: ClassifierService,
        event_bus: EventBus,
        signature_limit: int = 20,
        window_hours: int = 24,
        batch_size: int = 3,
        batch_delay: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._chain = chain
        self._classifier = classifier
        self._bus = event_bus
        self._signature_limit = signature_limit
        self._window = timedelta(hours=window_hours)
        self._batch_size = max(1, batch_size)
        self._batch_delay = batch_delay
        self._sleep = sleep
        # wallet → (last_updated key, quote, cached_at)
        self._cache: dict[str, tuple[Optional[str], ExperienceQuote, datetime]] = {}
        self._register_event_handlers()

    def _register_event_handlers(self) -> None:
        """EventBus 구독"""
        self._bus.subscribe(EventTypes.TRANSACTIONS_REFRESHED, self._on_wallet_changed)
        self._bus.subscribe(EventTypes.COMPANION_SYNCED, self._on_wallet_changed)

    def _on_wallet_changed(self, event: WalletEvent) -> None:
        if self._cache.pop(event.wallet_address, None) is not None:
            logger.debug("Experience quote invalidated: %s", event.wallet_address)

    # === 조회 ===

    def recent_transactions(self, wallet_address: str) -> list[SignatureInfo]:
        """최근 서명 목록. TRANSACTIONS_REFRESHED 발행."""
        signatures = self._chain.get_signatures_for_address(
            wallet_address, self._signature_limit
        )
        self._bus.emit(
            WalletEvent(
                event_type=EventTypes.TRANSACTIONS_REFRESHED,
                wallet_address=wallet_address,
                source="experience_service",
                data={"count": len(signatures)},
            )
        )
        return signatures

    def quote(
        self,
        wallet_address: str,
        last_updated: Optional[Timestamp] = None,
        date_of_birth: Optional[Timestamp] = None,
        now: Optional[datetime] = None,
    ) -> ExperienceQuote:
        """이번 sync의 XP 증분 견적.

        sync 불가면 XP 0 + 남은 시간. 가능하면 윈도우 안의 트랜잭션을
        배치 분류 후 compute_xp.

        Raises:
            ValidationError: 지갑 주소 형식 오류
            ValueError: 타임스탬프 파싱 실패
            ChainError: 서명 목록 조회 실패
        """
        parse_pubkey(wallet_address, "wallet address")
        now = to_utc(now) if now else utc_now()
        last = parse_timestamp(last_updated)
        parse_timestamp(date_of_birth)

        decision = can_sync(last, date_of_birth, now)
        if not decision.allowed:
            return ExperienceQuote(
                can_sync=False,
                experience_points=0,
                hours_until_next_sync=decision.hours_until_next,
                message=decision.message,
            )

        cache_key = last.isoformat() if last else None
        cached = self._cache.get(wallet_address)
        if cached and cached[0] == cache_key and now - cached[2] < QUOTE_CACHE_TTL:
            logger.debug("Experience quote cache hit: %s", wallet_address)
            return cached[1]

        signatures = self._chain.get_signatures_for_address(
            wallet_address, self._signature_limit
        )
        window = select_window(signatures, now, last, self._window)
        classified = self.classify_batch(
            [info.signature for info in window], wallet_address
        )
        xp = compute_xp(classified)
        logger.info(
            "Experience quote: wallet=%s, transactions=%d, xp=%d",
            wallet_address,
            len(classified),
            xp,
        )

        result = ExperienceQuote(
            can_sync=True,
            experience_points=xp,
            transaction_count=len(classified),
            classified=classified,
        )
        self._evict_expired(now)
        self._cache[wallet_address] = (cache_key, result, now)
        return result

    def _evict_expired(self, now: datetime) -> None:
        expired = [
            wallet
            for wallet, (_, _, cached_at) in self._cache.items()
            if now - cached_at >= QUOTE_CACHE_TTL
        ]
        for wallet in expired:
            del self._cache[wallet]
        if expired:
            logger.debug("Experience quote cache evicted %d entries", len(expired))

    def classify_batch(
        self, signatures: list[str], wallet_address: str
    ) -> list[ClassifiedTransaction]:
        """batch_size씩 병렬 분류, 배치 사이 고정 지연. 입력 순서로 반환."""
        results: list[ClassifiedTransaction] = []
        if not signatures:
            return results

        with ThreadPoolExecutor(max_workers=self._batch_size) as executor:
            for start in range(0, len(signatures), self._batch_size):
                if start > 0 and self._batch_delay > 0:
                    self._sleep(self._batch_delay)
                batch = signatures[start : start + self._batch_size]
                # map은 입력 순서를 보존한다
                results.extend(
                    executor.map(
                        lambda sig: self._classifier.classify_safe(sig, wallet_address),
                        batch,
                    )
                )
        return results
