"""通知の抽象インターフェース。

計測の開始・停止と「現在計測中」の問い合わせ結果を外部へ知らせる。
通知はコミット後に投げっぱなしで呼ばれ、失敗しても台帳の
トランザクションには影響しない。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from timeledger.interfaces.time_store import TimeWindow


class NotifierInterface(ABC):
    """通知先の抽象インターフェース。"""

    @abstractmethod
    def timing_started(self, category: str, previous: str | None) -> None:
        """計測開始を通知する。previous は直前まで計測していたカテゴリ。"""
        ...

    @abstractmethod
    def timing_stopped(self, category: str) -> None:
        """計測停止を通知する。"""
        ...

    @abstractmethod
    def currently_timing(
        self, window: TimeWindow | None, elapsed_seconds: int | None
    ) -> None:
        """現在計測中の時間枠と経過秒数を通知する。計測中でなければ None。"""
        ...
