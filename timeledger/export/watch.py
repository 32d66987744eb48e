"""出力先への書き出しと、ストレージ変更を監視して再出力する watch ループ."""

import io
import logging
import sys
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import TextIO

from timeledger.config import WATCH_INTERVAL
from timeledger.export.formats import ExportFormat, render_export
from timeledger.interfaces.time_store import TimeStoreInterface

logger = logging.getLogger(__name__)

STDOUT = "-"


@contextmanager
def open_sink(outfile: str) -> Iterator[TextIO]:
    """出力先を開く。"-" なら標準出力（閉じない）、それ以外はファイルを上書きする。"""
    if outfile == STDOUT:
        yield sys.stdout
        sys.stdout.flush()
        return
    with open(outfile, "w", encoding="utf-8", newline="") as handle:
        yield handle


def generate_export(
    store: TimeStoreInterface,
    fmt: ExportFormat,
    outfile: str = STDOUT,
    start: int | None = None,
    end: int | None = None,
) -> None:
    """範囲指定で時間枠を読み出し、指定形式で出力する。

    変換が失敗した場合は出力先に触れない（前回の出力が残る）。
    """
    windows = store.get_windows(start, end)
    buffer = io.StringIO()
    render_export(windows, fmt, buffer, start, end)
    with open_sink(outfile) as sink:
        sink.write(buffer.getvalue())


def watch_export(
    store: TimeStoreInterface,
    fmt: ExportFormat,
    outfile: str = STDOUT,
    start: int | None = None,
    end: int | None = None,
    interval: float = WATCH_INTERVAL,
    max_polls: int | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """ストレージの変更を監視し、変更のたびに出力を作り直す.

    最初の1回は必ず出力する。1回の出力が失敗してもログに残してループを続ける。
    停止手段はプロセスの終了のみ（max_polls はテスト用の上限）。

    Args:
        store: 監視対象のStore
        fmt: 出力形式
        outfile: 出力先（"-" は標準出力）
        start: 集計期間の開始（省略時は無制限）
        end: 集計期間の終了（省略時は無制限）
        interval: ポーリング間隔（秒）
        max_polls: ポーリング回数の上限（None なら無限）
        sleep: 待機関数
    """
    last_token = None
    first = True
    polls = 0
    while max_polls is None or polls < max_polls:
        token = store.change_token()
        if first or token != last_token:
            try:
                generate_export(store, fmt, outfile, start, end)
            except Exception:
                logger.exception("Could not generate export")
            else:
                logger.debug("Regenerated %s export to %s", fmt, outfile)
            last_token = token
            first = False
        polls += 1
        sleep(interval)
