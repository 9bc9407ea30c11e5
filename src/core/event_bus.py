"""EventBus - 서비스 간 이벤트 통신 인프라

규칙:
- 서비스는 다른 서비스를 직접 import하지 않는다
- 이벤트는 지갑 주소와 식별자(서명, 에셋 주소)만 전달한다
- 전파 깊이 최대 MAX_DEPTH 단계
- 한 전파 체인 안에서 동일 (source, event_type, wallet) 중복 발행 금지
- 전파 체인은 스레드 단위. 요청 스레드끼리 깊이/중복 추적을 공유하지 않는다
"""

import threading
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Set

from src.core.logging import get_logger

logger = get_logger(__name__)

MAX_DEPTH = 5  # 한 체인 내 이벤트 전파 최대 깊이


@dataclass
class WalletEvent:
    """지갑 단위 이벤트

    Args:
        event_type: 이벤트 유형 (EventTypes 상수)
        wallet_address: 대상 지갑 주소 (base58)
        source: 발행한 서비스 이름
        data: 부가 식별자 (서명, 에셋 주소 등)
    """

    event_type: str
    wallet_address: str
    source: str
    data: Dict[str, Any] = field(default_factory=dict)

    # 내부 추적용 (외부에서 설정하지 않음)
    _depth: int = field(default=0, repr=False)


EventHandler = Callable[[WalletEvent], None]


class EventBus:
    """동기식 이벤트 버스

    사용 패턴:
        bus = EventBus()
        bus.subscribe(EventTypes.TRANSACTIONS_REFRESHED, experience_service.on_refreshed)
        bus.emit(WalletEvent(EventTypes.TRANSACTIONS_REFRESHED, wallet, "transactions_api"))

    최상위 emit이 끝나면 중복 추적이 자동 초기화된다.
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, List[EventHandler]] = defaultdict(list)
        self._lock = threading.Lock()
        # 스레드별 전파 체인 상태
        self._local = threading.local()

    @property
    def _current_depth(self) -> int:
        return getattr(self._local, "depth", 0)

    @_current_depth.setter
    def _current_depth(self, value: int) -> None:
        self._local.depth = value

    @property
    def _emitted_in_chain(self) -> Set[str]:
        emitted = getattr(self._local, "emitted", None)
        if emitted is None:
            emitted = self._local.emitted = set()
        return emitted

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        """이벤트 구독 등록"""
        with self._lock:
            self._handlers[event_type].append(handler)
        logger.debug(f"EventBus 구독: {event_type} → {handler.__qualname__}")

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        """이벤트 구독 해제"""
        with self._lock:
            try:
                self._handlers.get(event_type, []).remove(handler)
            except ValueError:
                logger.warning(f"핸들러 미등록: {event_type} → {handler.__qualname__}")

    def emit(self, event: WalletEvent) -> None:
        """이벤트 발행. 등록된 핸들러를 동기 호출.

        핸들러 예외는 로그만 남기고 다음 핸들러로 진행한다.
        """
        if self._current_depth >= MAX_DEPTH:
            logger.warning(
                f"EventBus 전파 깊이 초과 ({MAX_DEPTH}): "
                f"{event.source}:{event.event_type} 무시됨"
            )
            return

        chain_key = f"{event.source}:{event.event_type}:{event.wallet_address}"
        if chain_key in self._emitted_in_chain:
            logger.warning(f"EventBus 중복 이벤트 차단: {chain_key}")
            return

        with self._lock:
            handlers = list(self._handlers.get(event.event_type, []))
        if not handlers:
            logger.debug(f"EventBus: {event.event_type} 구독자 없음")
            return

        self._emitted_in_chain.add(chain_key)
        event._depth = self._current_depth

        logger.info(
            f"EventBus 전파: {event.event_type} (source={event.source}, "
            f"wallet={event.wallet_address}, handlers={len(handlers)})"
        )

        self._current_depth += 1
        try:
            for handler in handlers:
                try:
                    handler(event)
                except Exception:
                    logger.exception(
                        f"EventBus 핸들러 에러: {handler.__qualname__} "
                        f"(event={event.event_type})"
                    )
        finally:
            self._current_depth -= 1
            if self._current_depth == 0:
                self._emitted_in_chain.clear()

    def clear(self) -> None:
        """모든 구독 해제 (테스트용)"""
        with self._lock:
            self._handlers.clear()
        self._emitted_in_chain.clear()
        self._current_depth = 0

    @property
    def handler_count(self) -> int:
        """등록된 총 핸들러 수"""
        with self._lock:
            return sum(len(h) for h in self._handlers.values())
