"""インメモリ EventBus と、それを使った通知の実装。

単一プロセス（uvicorn）前提の軽量 pub/sub。
台帳サービスが計測の開始・停止時に publish し、
SSE エンドポイントが subscribe してクライアントへ中継する。
"""

import asyncio
from contextlib import asynccontextmanager

from timeledger.interfaces.notifier import NotifierInterface
from timeledger.interfaces.time_store import TimeWindow


class EventBus:
    """asyncio.Queue ベースのインメモリ pub/sub バス。"""

    def __init__(self) -> None:
        self._subscribers: list[asyncio.Queue[dict]] = []

    def publish(self, event: str, data: dict | None = None) -> None:
        """全 subscriber にイベントを配信する。"""
        message = {"event": event, "data": data}
        for queue in self._subscribers:
            queue.put_nowait(message)

    @asynccontextmanager
    async def subscribe(self):
        """コンテキスト内で Queue を受け取り、イベントを待ち受ける。"""
        queue: asyncio.Queue[dict] = asyncio.Queue()
        self._subscribers.append(queue)
        try:
            yield queue
        finally:
            self._subscribers.remove(queue)


class EventBusNotifier(NotifierInterface):
    """通知を EventBus のイベントとして配信する。"""

    def __init__(self, bus: EventBus) -> None:
        self._bus = bus

    def timing_started(self, category: str, previous: str | None) -> None:
        self._bus.publish(
            "timing-started", {"category": category, "previous": previous}
        )

    def timing_stopped(self, category: str) -> None:
        self._bus.publish("timing-stopped", {"category": category})

    def currently_timing(
        self, window: TimeWindow | None, elapsed_seconds: int | None
    ) -> None:
        if window is None:
            self._bus.publish("currently-timing", None)
            return
        hours, rem = divmod(elapsed_seconds or 0, 3600)
        minutes, seconds = divmod(rem, 60)
        self._bus.publish(
            "currently-timing",
            {
                "id": window.id,
                "category": window.category,
                "start_time": window.start_time,
                "elapsed_seconds": elapsed_seconds,
                "elapsed": f"{hours:02d}:{minutes:02d}:{seconds:02d}",
            },
        )
