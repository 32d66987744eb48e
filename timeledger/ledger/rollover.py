"""計測中の時間枠を終了させるロールオーバー処理."""

import logging
import time
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta

from timeledger.interfaces.time_store import TimeStoreInterface, TimeWindow
from timeledger.ledger.boundary import HourMinute

logger = logging.getLogger(__name__)


def epoch_now() -> int:
    """現在時刻（エポック秒）。"""
    return int(time.time())


def boundary_close_time(start_time: int, boundary: HourMinute, now: int) -> int:
    """終業時刻に基づいて時間枠の終了時刻を決める.

    開始日の終業時刻を候補とし、それが開始時刻以前なら翌日の終業時刻にする。
    最終的な終了時刻は候補と現在時刻の早い方（未来には閉じない）。
    日付の計算はローカル時刻で行う。

    Args:
        start_time: 時間枠の開始（エポック秒）
        boundary: 終業時刻
        now: 現在時刻（エポック秒）

    Returns:
        終了時刻（エポック秒）。start_time を下回らない。
    """
    start = datetime.fromtimestamp(start_time)
    candidate = start.replace(
        hour=boundary.hour, minute=boundary.minute, second=0, microsecond=0
    )
    if candidate <= start:
        candidate += timedelta(days=1)
    end_time = min(int(candidate.timestamp()), now)
    return max(end_time, start_time)


class RolloverResolver:
    """計測中の時間枠の終了方法を決めて適用する.

    終業時刻が未設定なら即時終了モード（全ての計測中の枠を現在時刻で一括終了）、
    設定されていれば終業時刻モード（枠ごとに終了時刻を算出して書き戻す）。
    どちらのモードも計測中の枠しか触らないため冪等。
    """

    def __init__(
        self,
        store: TimeStoreInterface,
        clock: Callable[[], int] = epoch_now,
    ) -> None:
        self._store = store
        self._clock = clock

    def close_open_windows(self, boundary: HourMinute | None) -> list[TimeWindow]:
        """計測中の時間枠を終了させる.

        Args:
            boundary: 終業時刻（None なら即時終了）

        Returns:
            終了させた時間枠（終了時刻を反映済み）
        """
        now = self._clock()
        open_windows = self._store.get_open_windows()
        if not open_windows:
            return []

        if boundary is None:
            self._store.close_open_windows(now)
            return [
                replace(w, end_time=max(now, w.start_time)) for w in open_windows
            ]

        closed: list[TimeWindow] = []
        for window in open_windows:
            end_time = boundary_close_time(window.start_time, boundary, now)
            closed.append(self._store.upsert_window(replace(window, end_time=end_time)))
            logger.debug(
                "Closed window %s at %s (end of day %s)", window.id, end_time, boundary
            )
        return closed
