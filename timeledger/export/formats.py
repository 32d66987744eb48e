"""時間枠リストを各種出力形式へ変換する.

どの関数も [TimeWindow] を受け取り、テキストシンクへ書き出すだけの純粋な変換。
ストレージには触れない。
"""

from collections.abc import Sequence
from datetime import UTC, datetime
from email.utils import format_datetime
from enum import StrEnum
from typing import TextIO

import pandas as pd
from icalendar import Calendar, Event
from pydantic import BaseModel, TypeAdapter

from timeledger.errors import EmptyResultError
from timeledger.interfaces.time_store import TimeWindow


class ExportFormat(StrEnum):
    """出力形式。"""

    JSON = "json"
    CSV = "csv"
    ICAL = "ical"
    SUMMARY = "summary"


CSV_COLUMNS = [
    "id",
    "category",
    "start",
    "end",
    "start_tstamp",
    "end_tstamp",
    "duration_hours",
    "duration_seconds",
]

MEDIA_TYPES: dict[ExportFormat, str] = {
    ExportFormat.JSON: "application/json",
    ExportFormat.CSV: "text/csv",
    ExportFormat.ICAL: "text/calendar",
    ExportFormat.SUMMARY: "text/plain",
}


class TimeWindowExport(BaseModel):
    """JSON出力の1要素。エポック秒とローカル時刻表記を併記する。"""

    id: int | None
    category: str
    start_time: int
    end_time: int | None
    start_timestamp: str
    end_timestamp: str | None


_EXPORT_LIST = TypeAdapter(list[TimeWindowExport])


# ---------- ヘルパー ----------


def local_datetime(tstamp: int) -> datetime:
    """エポック秒 → タイムゾーン付きのローカル時刻。"""
    return datetime.fromtimestamp(tstamp).astimezone()


def local_rfc3339(tstamp: int) -> str:
    return local_datetime(tstamp).isoformat()


def format_hms(seconds: int) -> str:
    """秒数を HH:MM:SS にする。"""
    return f"{seconds // 3600:02d}:{seconds // 60 % 60:02d}:{seconds % 60:02d}"


def _sanitize_category(category: str) -> str:
    return category.replace(",", ".").replace("\n", "").replace("\r", "")


# ---------- 各形式 ----------


def render_json(windows: Sequence[TimeWindow], sink: TextIO) -> None:
    exports = [
        TimeWindowExport(
            id=w.id,
            category=w.category,
            start_time=w.start_time,
            end_time=w.end_time,
            start_timestamp=local_rfc3339(w.start_time),
            end_timestamp=(
                local_rfc3339(w.end_time) if w.end_time is not None else None
            ),
        )
        for w in windows
    ]
    sink.write(_EXPORT_LIST.dump_json(exports, indent=2).decode("utf-8"))


def render_csv(windows: Sequence[TimeWindow], sink: TextIO) -> None:
    """CSVを書き出す.

    カテゴリ中のカンマは "."、改行は除去する。
    計測中の枠は終了関連の列を空欄にする。
    """
    frame = pd.DataFrame(
        {
            "id": pd.array([w.id for w in windows], dtype="Int64"),
            "category": [_sanitize_category(w.category) for w in windows],
            "start": [local_rfc3339(w.start_time) for w in windows],
            "end": [
                local_rfc3339(w.end_time) if w.end_time is not None else None
                for w in windows
            ],
            "start_tstamp": pd.array([w.start_time for w in windows], dtype="Int64"),
            "end_tstamp": pd.array([w.end_time for w in windows], dtype="Int64"),
            "duration_hours": pd.Series(
                [
                    (w.end_time - w.start_time) / 3600
                    if w.end_time is not None
                    else None
                    for w in windows
                ],
                dtype="float64",
            ),
            "duration_seconds": pd.array(
                [
                    w.end_time - w.start_time if w.end_time is not None else None
                    for w in windows
                ],
                dtype="Int64",
            ),
        },
        columns=CSV_COLUMNS,
    )
    frame.to_csv(
        sink, index=False, na_rep="", float_format="%.2f", lineterminator="\n"
    )


def render_ical(windows: Sequence[TimeWindow], sink: TextIO) -> None:
    """iCalendarを書き出す。終了時刻のない計測中の枠は含めない。"""
    calendar = Calendar()
    calendar.add("prodid", "-//timeledger//time windows//EN")
    calendar.add("version", "2.0")
    stamp = datetime.now(UTC)
    for w in windows:
        if w.end_time is None:
            continue
        event = Event()
        event.add("uid", f"time-window-{w.id}@timeledger")
        event.add("dtstamp", stamp)
        event.add("summary", w.category)
        event.add("dtstart", datetime.fromtimestamp(w.start_time, UTC))
        event.add("dtend", datetime.fromtimestamp(w.end_time, UTC))
        calendar.add_component(event)
    sink.write(calendar.to_ical().decode("utf-8"))


def summary_header(start: int | None, end: int | None) -> str:
    """集計対象期間を説明する見出し行。"""
    if start is None and end is None:
        return "Tabulating results for all time"
    if end is None:
        return (
            "Tabulating results starting on/after "
            f"{format_datetime(local_datetime(start))}"
        )
    if start is None:
        return f"Tabulating results through {format_datetime(local_datetime(end))}"
    return (
        "Tabulating results starting on/after "
        f"{format_datetime(local_datetime(start))} "
        f"through {format_datetime(local_datetime(end))}"
    )


def render_summary(
    windows: Sequence[TimeWindow],
    sink: TextIO,
    start: int | None = None,
    end: int | None = None,
) -> None:
    """カテゴリ別の件数・累積時間・構成比を書き出す.

    計測中の枠は件数にのみ数え、時間には加えない。

    Raises:
        EmptyResultError: 集計対象が0件
    """
    if not windows:
        raise EmptyResultError("Didn't find any times to summarize")

    frame = pd.DataFrame(
        {
            "category": [w.category for w in windows],
            "duration": [w.duration_seconds or 0 for w in windows],
        }
    )
    totals = frame.groupby("category", sort=True)["duration"].agg(["size", "sum"])
    total_count = int(totals["size"].sum())
    total_duration = int(totals["sum"].sum())

    lines = [
        summary_header(start, end),
        f"Logged {total_count} activities for a total of {format_hms(total_duration)}",
    ]
    for category, row in totals.iterrows():
        duration = int(row["sum"])
        share = duration / total_duration * 100 if total_duration else 0.0
        lines.append(f"{category}:")
        lines.append(
            f"  {int(row['size'])} logs, {format_hms(duration)} cumulative, "
            f"{share:.2f}% of total"
        )
    sink.write("\n".join(lines) + "\n")


def render_export(
    windows: Sequence[TimeWindow],
    fmt: ExportFormat,
    sink: TextIO,
    start: int | None = None,
    end: int | None = None,
) -> None:
    """形式に応じて変換関数を振り分ける。start/end は集計見出し用。"""
    if fmt is ExportFormat.JSON:
        render_json(windows, sink)
    elif fmt is ExportFormat.CSV:
        render_csv(windows, sink)
    elif fmt is ExportFormat.ICAL:
        render_ical(windows, sink)
    elif fmt is ExportFormat.SUMMARY:
        render_summary(windows, sink, start, end)
    else:
        raise ValueError(f"Unknown export format: {fmt}")
