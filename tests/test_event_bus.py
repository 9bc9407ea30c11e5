"""EventBus 테스트"""

import threading

from src.core.event_bus import MAX_DEPTH, EventBus, WalletEvent
from src.core.event_types import EventTypes

WALLET = "wallet-1"


def event(event_type: str = "evt", source: str = "test", wallet: str = WALLET, **data):
    return WalletEvent(event_type=event_type, wallet_address=wallet, source=source, data=data)


class TestSubscribeEmit:
    def test_basic_emit(self):
        bus = EventBus()
        received = []
        bus.subscribe(EventTypes.COMPANION_SYNCED, lambda e: received.append(e))
        bus.emit(event(EventTypes.COMPANION_SYNCED, signature="sig"))
        assert len(received) == 1
        assert received[0].wallet_address == WALLET
        assert received[0].data["signature"] == "sig"

    def test_multiple_handlers(self):
        bus = EventBus()
        results = []
        bus.subscribe("evt", lambda e: results.append("a"))
        bus.subscribe("evt", lambda e: results.append("b"))
        bus.emit(event())
        assert results == ["a", "b"]

    def test_no_handlers(self):
        """구독자 없는 이벤트 발행: 에러 없이 무시"""
        EventBus().emit(event("no_one_listens"))

    def test_unsubscribe(self):
        bus = EventBus()
        received = []
        handler = lambda e: received.append(e)  # noqa: E731
        bus.subscribe("evt", handler)
        bus.unsubscribe("evt", handler)
        bus.emit(event())
        assert received == []

    def test_unsubscribe_nonexistent(self):
        """미등록 핸들러 해제: 경고만, 에러 없음"""
        EventBus().unsubscribe("evt", lambda e: None)


class TestDepthLimit:
    def test_max_depth_prevents_infinite_loop(self):
        bus = EventBus()
        call_count = 0

        def recursive_handler(e: WalletEvent):
            nonlocal call_count
            call_count += 1
            # 다른 source로 발행해서 중복 체크를 우회
            bus.emit(event("chain", source=f"handler_{call_count}"))

        bus.subscribe("chain", recursive_handler)
        bus.emit(event("chain", source="origin"))

        assert call_count == MAX_DEPTH


class TestDuplicatePrevention:
    def test_same_source_same_wallet_blocked(self):
        bus = EventBus()
        count = 0

        def handler(e: WalletEvent):
            nonlocal count
            count += 1
            bus.emit(event(source="same_source"))

        bus.subscribe("evt", handler)
        bus.emit(event(source="same_source"))
        assert count == 1

    def test_other_wallet_allowed_in_chain(self):
        bus = EventBus()
        wallets = []

        def handler(e: WalletEvent):
            wallets.append(e.wallet_address)
            if e.wallet_address == WALLET:
                bus.emit(event(source="same_source", wallet="wallet-2"))

        bus.subscribe("evt", handler)
        bus.emit(event(source="same_source"))
        assert wallets == [WALLET, "wallet-2"]

    def test_chain_resets_after_top_level_emit(self):
        bus = EventBus()
        received = []
        bus.subscribe("re", lambda e: received.append(1))
        bus.emit(event("re", source="s"))
        bus.emit(event("re", source="s"))
        assert len(received) == 2


class TestHandlerError:
    def test_handler_exception_doesnt_stop_others(self):
        bus = EventBus()
        results = []

        def bad_handler(e):
            raise ValueError("boom")

        bus.subscribe("evt", bad_handler)
        bus.subscribe("evt", lambda e: results.append("ok"))
        bus.emit(event())
        assert results == ["ok"]


class TestClear:
    def test_clear_removes_all(self):
        bus = EventBus()
        bus.subscribe("a", lambda e: None)
        bus.subscribe("b", lambda e: None)
        assert bus.handler_count == 2
        bus.clear()
        assert bus.handler_count == 0


class TestThreadedChains:
    def test_chains_in_other_threads_are_independent(self):
        """한 스레드의 전파 체인이 진행 중이어도 다른 스레드의 같은 이벤트는 전달된다"""
        bus = EventBus()
        entered = threading.Event()
        release = threading.Event()
        received = []

        def handler(e):
            received.append(e.data["n"])
            if e.data["n"] == 1:
                entered.set()
                release.wait(timeout=5)

        bus.subscribe("evt", handler)
        first = threading.Thread(target=bus.emit, args=(event(n=1),))
        first.start()
        assert entered.wait(timeout=5)

        second = threading.Thread(target=bus.emit, args=(event(n=2),))
        second.start()
        second.join(timeout=5)
        release.set()
        first.join(timeout=5)

        assert sorted(received) == [1, 2]

    def test_depth_is_per_thread(self):
        bus = EventBus()
        depths = []
        bus.subscribe("evt", lambda e: depths.append(e._depth))

        worker = threading.Thread(target=bus.emit, args=(event(),))
        worker.start()
        worker.join(timeout=5)
        bus.emit(event())

        assert depths == [0, 0]
