"""Store層のSQLite実装。

TimeStoreInterfaceに準拠したSQLite実装を提供する。
"""

import os
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace

from timeledger.config import VERSION
from timeledger.errors import (
    CategoryInUseError,
    NotFoundError,
    OverlapError,
    ValidationError,
)
from timeledger.interfaces.time_store import TimeStoreInterface, TimeWindow

# スキーマ定義
SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS options (
    name        TEXT PRIMARY KEY,
    value       TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS categories (
    name        TEXT PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS time_windows (
    id          INTEGER PRIMARY KEY,
    category    TEXT NOT NULL
                REFERENCES categories(name) ON UPDATE CASCADE ON DELETE RESTRICT,
    start_time  INTEGER NOT NULL CHECK (start_time >= 0),
    end_time    INTEGER CHECK (end_time IS NULL OR end_time >= start_time)
);

CREATE INDEX IF NOT EXISTS idx_time_windows_start
    ON time_windows(start_time);
"""

# 候補と重なる既存の時間枠を探す。:end_time は NULL を取り得る。
OVERLAP_SQL = """
SELECT id
FROM time_windows
WHERE id IS NOT :id
  AND (
    -- 候補の開始が既存の終了済み枠の中にある
    (:start_time >= start_time AND :start_time <= end_time)
    -- 候補の終了が既存の終了済み枠の中にある
    OR COALESCE(:end_time >= start_time AND :end_time <= end_time, 0)
    -- 計測中の枠があれば候補はその開始より完全に前でなければならない
    OR (end_time IS NULL
        AND (:start_time >= start_time OR COALESCE(:end_time >= start_time, 0)))
    -- 既存の枠の開始が候補の中にある（計測中の候補は無限に続く）
    OR (start_time >= :start_time
        AND (:end_time IS NULL OR start_time <= :end_time))
    -- 計測中の候補より後ろまで続く既存の枠
    OR (:end_time IS NULL AND end_time >= :start_time)
  )
ORDER BY start_time, id
"""

UPSERT_SQL = """
REPLACE INTO time_windows (id, category, start_time, end_time)
VALUES (:id, :category, :start_time, :end_time)
"""

BULK_DELETE_SQL = """
DELETE FROM time_windows
WHERE CASE WHEN :non_inclusive
    -- 範囲に完全に含まれる枠のみ
    THEN (start_time >= :start AND end_time <= :end)
    -- 開始または終了が範囲に入る枠
    ELSE (start_time >= :start AND start_time <= :end)
         OR (end_time >= :start AND end_time <= :end)
    END
"""

_WINDOW_COLUMNS = "id, category, start_time, end_time"


def _row_to_window(row: tuple) -> TimeWindow:
    return TimeWindow(id=row[0], category=row[1], start_time=row[2], end_time=row[3])


class SqliteTimeStore(TimeStoreInterface):
    """SQLiteによるStore層実装。"""

    def __init__(self, db_path: str):
        """初期化。

        Args:
            db_path: SQLiteデータベースファイルのパス（":memory:" も可）
        """
        self._db_path = db_path
        # トランザクションは transaction() で明示的に張る
        self._conn = sqlite3.connect(
            db_path, isolation_level=None, check_same_thread=False
        )
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._depth = 0
        self._init_schema()

    def _init_schema(self) -> None:
        """スキーマを初期化し、DBバージョンを記録する。"""
        with self.transaction():
            for statement in SCHEMA_SQL.split(";"):
                if statement.strip():
                    self._conn.execute(statement)
            self._conn.execute(
                "REPLACE INTO options (name, value) VALUES ('dbversion', ?)",
                (VERSION,),
            )

    def close(self) -> None:
        self._conn.close()

    # ---------- トランザクション ----------

    @contextmanager
    def transaction(self) -> Iterator["SqliteTimeStore"]:
        if self._depth > 0:
            # 外側のトランザクションに参加する
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        self._conn.execute("BEGIN IMMEDIATE")
        self._depth = 1
        try:
            yield self
        except BaseException:
            self._conn.execute("ROLLBACK")
            raise
        else:
            self._conn.execute("COMMIT")
        finally:
            self._depth = 0

    def change_token(self) -> tuple[int | None, int]:
        """ファイルの更新時刻と接続の累積変更数の組。

        他プロセスからの書き込みは更新時刻で、同一接続からの書き込みは
        変更数で検知する。
        """
        try:
            mtime = os.stat(self._db_path).st_mtime_ns
        except OSError:
            mtime = None
        return (mtime, self._conn.total_changes)

    # ---------- 時間枠 ----------

    def upsert_window(self, window: TimeWindow) -> TimeWindow:
        """時間枠を挿入または置換する。

        Args:
            window: 書き込む時間枠

        Returns:
            id が採番された時間枠
        """
        if window.start_time < 0:
            raise ValidationError(
                f"start time must be >= 0, got {window.start_time}"
            )
        if window.end_time is not None and window.end_time < window.start_time:
            raise ValidationError(
                f"end time ({window.end_time}) must not be before "
                f"start time ({window.start_time})"
            )

        params = {
            "id": window.id,
            "category": window.category,
            "start_time": window.start_time,
            "end_time": window.end_time,
        }
        with self.transaction():
            overlapping_ids = [
                row[0] for row in self._conn.execute(OVERLAP_SQL, params)
            ]
            if overlapping_ids:
                raise OverlapError(
                    overlapping_ids,
                    window,
                    self.get_window(overlapping_ids[0]),
                )

            try:
                cursor = self._conn.execute(UPSERT_SQL, params)
            except sqlite3.IntegrityError as e:
                if "FOREIGN KEY" in str(e):
                    raise NotFoundError(
                        f"Category '{window.category}' does not exist"
                    ) from e
                raise ValidationError(str(e)) from e

        if window.id is None:
            return replace(window, id=cursor.lastrowid)
        return window

    def get_window(self, window_id: int) -> TimeWindow:
        row = self._conn.execute(
            f"SELECT {_WINDOW_COLUMNS} FROM time_windows WHERE id = ?",
            (window_id,),
        ).fetchone()
        if row is None:
            raise NotFoundError(f"Time window {window_id} does not exist")
        return _row_to_window(row)

    def get_last_open_window(self) -> TimeWindow | None:
        row = self._conn.execute(
            f"SELECT {_WINDOW_COLUMNS} FROM time_windows"
            " WHERE end_time IS NULL ORDER BY start_time DESC LIMIT 1"
        ).fetchone()
        if row is None:
            return None
        return _row_to_window(row)

    def get_open_windows(self) -> list[TimeWindow]:
        rows = self._conn.execute(
            f"SELECT {_WINDOW_COLUMNS} FROM time_windows"
            " WHERE end_time IS NULL ORDER BY start_time"
        ).fetchall()
        return [_row_to_window(r) for r in rows]

    def get_latest_end_time(self) -> int | None:
        (latest,) = self._conn.execute(
            "SELECT MAX(end_time) FROM time_windows"
        ).fetchone()
        return latest

    def start_timing(self, category: str, start_time: int) -> TimeWindow:
        return self.upsert_window(
            TimeWindow(category=category, start_time=start_time)
        )

    def close_open_windows(self, end_time: int) -> int:
        # 未来に開始した枠は開始時刻で閉じる（end_time >= start_time を保つ）
        with self.transaction():
            cursor = self._conn.execute(
                "UPDATE time_windows SET end_time = MAX(?, start_time)"
                " WHERE end_time IS NULL",
                (end_time,),
            )
        return cursor.rowcount

    def delete_window(self, window_id: int) -> int:
        with self.transaction():
            cursor = self._conn.execute(
                "DELETE FROM time_windows WHERE id = ?", (window_id,)
            )
        return cursor.rowcount

    def get_windows(
        self,
        start: int | None = None,
        end: int | None = None,
    ) -> list[TimeWindow]:
        """start_time で範囲を絞って時間枠を取得する。

        Args:
            start: 下限（省略時は無制限）
            end: 上限（省略時は無制限）

        Returns:
            時間枠のリスト（start_time, id 昇順）
        """
        rows = self._conn.execute(
            f"""
            SELECT {_WINDOW_COLUMNS}
            FROM time_windows
            WHERE (:start IS NULL OR start_time >= :start)
              AND (:end IS NULL OR start_time <= :end)
            ORDER BY start_time, id
            """,
            {"start": start, "end": end},
        ).fetchall()
        return [_row_to_window(r) for r in rows]

    def bulk_delete(
        self,
        range_start: int,
        range_end: int,
        non_inclusive: bool = False,
    ) -> int:
        if not range_end > range_start:
            raise ValidationError(
                f"end time ({range_end}) must be greater than "
                f"start time ({range_start})"
            )
        with self.transaction():
            cursor = self._conn.execute(
                BULK_DELETE_SQL,
                {
                    "non_inclusive": non_inclusive,
                    "start": range_start,
                    "end": range_end,
                },
            )
        return cursor.rowcount

    # ---------- カテゴリ ----------

    def category_exists(self, name: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM categories WHERE name = ?", (name,)
        ).fetchone()
        return row is not None

    def get_categories(self) -> list[str]:
        rows = self._conn.execute(
            "SELECT name FROM categories ORDER BY name"
        ).fetchall()
        return [r[0] for r in rows]

    def add_category(self, name: str) -> None:
        with self.transaction():
            if self.category_exists(name):
                raise ValidationError(f"Category '{name}' already exists")
            self._conn.execute("INSERT INTO categories (name) VALUES (?)", (name,))

    def rename_category(self, old: str, new: str) -> None:
        with self.transaction():
            if not self.category_exists(old):
                raise NotFoundError(
                    f'Category "{old}" cannot be renamed to "{new}" '
                    f'because "{old}" does not exist'
                )
            if self.category_exists(new):
                raise ValidationError(f"Category '{new}' already exists")
            # time_windows.category は ON UPDATE CASCADE で追従する
            self._conn.execute(
                "UPDATE categories SET name = ? WHERE name = ?", (new, old)
            )

    def delete_category(self, name: str, delete_logged_times: bool = False) -> None:
        with self.transaction():
            if not self.category_exists(name):
                raise NotFoundError(f"Category '{name}' does not exist")
            (count,) = self._conn.execute(
                "SELECT COUNT(*) FROM time_windows WHERE category = ?", (name,)
            ).fetchone()
            if count and not delete_logged_times:
                raise CategoryInUseError(
                    f"Category '{name}' still has {count} logged time(s); "
                    "use delete_logged_times to delete them along with the category"
                )
            self._conn.execute("DELETE FROM time_windows WHERE category = ?", (name,))
            self._conn.execute("DELETE FROM categories WHERE name = ?", (name,))

    # ---------- オプション ----------

    def get_options(self) -> dict[str, str]:
        rows = self._conn.execute(
            "SELECT name, value FROM options ORDER BY name"
        ).fetchall()
        return {r[0]: r[1] for r in rows}

    def get_option(self, name: str) -> str | None:
        row = self._conn.execute(
            "SELECT value FROM options WHERE name = ?", (name,)
        ).fetchone()
        return row[0] if row else None

    def set_option(self, name: str, value: str) -> None:
        with self.transaction():
            self._conn.execute(
                "REPLACE INTO options (name, value) VALUES (?, ?)", (name, value)
            )

    def unset_option(self, name: str) -> None:
        with self.transaction():
            self._conn.execute("DELETE FROM options WHERE name = ?", (name,))
