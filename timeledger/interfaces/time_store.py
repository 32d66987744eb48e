"""Store層の抽象インターフェース。

Store層は時間枠（time window）の永続化と検索を担う。
時間枠の非重複・未終了枠は最大1件という不変条件はこの層が書き込みのたびに保証する。
カテゴリとオプション（単純なキー・バリュー）の管理もこの層の責務。
"""

from abc import ABC, abstractmethod
from collections.abc import Hashable
from contextlib import AbstractContextManager
from dataclasses import dataclass
from enum import StrEnum


@dataclass(frozen=True)
class TimeWindow:
    """時間枠（ドメインモデル）。

    時刻は全てエポック秒。end_time が None の枠は計測中（open）。
    id は永続化前は None で、Store が挿入時に採番する。
    """

    category: str
    start_time: int
    end_time: int | None = None
    id: int | None = None

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    @property
    def duration_seconds(self) -> int | None:
        """終了済みの枠の長さ（秒）。計測中なら None。"""
        if self.end_time is None:
            return None
        return abs(self.end_time - self.start_time)


class OptionName(StrEnum):
    """設定可能なグローバルオプション。"""

    END_OF_DAY = "end-of-day"


class TimeStoreInterface(ABC):
    """Store層の抽象インターフェース。

    全ての層はこのインターフェースを介してデータにアクセスする。
    SQLiteを直接触るコードが他の層に漏洩してはならない。

    書き込み系メソッドは transaction() の内側で呼ばれた場合はその
    トランザクションに参加し、外側で呼ばれた場合は単独でコミットする。
    """

    # ---------- トランザクション ----------

    @abstractmethod
    def transaction(self) -> AbstractContextManager["TimeStoreInterface"]:
        """1つの論理操作を包むトランザクション。

        正常終了でコミット、例外でロールバックする。
        入れ子で使った場合は外側のトランザクションに参加する。
        """
        ...

    @abstractmethod
    def change_token(self) -> Hashable:
        """ストレージが変更されるたびに値が変わるトークンを返す（watch用）。"""
        ...

    # ---------- 時間枠 ----------

    @abstractmethod
    def upsert_window(self, window: TimeWindow) -> TimeWindow:
        """時間枠を挿入または置換する。

        id が None なら新規挿入、指定されていれば全項目を置換する。
        end_time を省略すると既存の終了時刻はクリアされる。

        Returns:
            id が採番された永続化後の時間枠

        Raises:
            ValidationError: start_time が負、または end_time < start_time
            OverlapError: 既存の時間枠と重なる
            NotFoundError: カテゴリが存在しない
        """
        ...

    @abstractmethod
    def get_window(self, window_id: int) -> TimeWindow:
        """IDで時間枠を取得する。存在しなければ NotFoundError。"""
        ...

    @abstractmethod
    def get_last_open_window(self) -> TimeWindow | None:
        """最も新しい計測中の時間枠を返す。なければ None。"""
        ...

    @abstractmethod
    def get_open_windows(self) -> list[TimeWindow]:
        """計測中の時間枠を全件返す。"""
        ...

    @abstractmethod
    def get_latest_end_time(self) -> int | None:
        """終了済みの時間枠のうち最も遅い終了時刻を返す。1件もなければ None。"""
        ...

    @abstractmethod
    def start_timing(self, category: str, start_time: int) -> TimeWindow:
        """指定カテゴリで計測中の時間枠を新規作成する。"""
        ...

    @abstractmethod
    def close_open_windows(self, end_time: int) -> int:
        """計測中の時間枠を一括で終了させる（重複検査なし）。

        Returns:
            更新された行数
        """
        ...

    @abstractmethod
    def delete_window(self, window_id: int) -> int:
        """時間枠を削除する。

        Returns:
            削除された行数（0 なら不正なID）
        """
        ...

    @abstractmethod
    def get_windows(
        self,
        start: int | None = None,
        end: int | None = None,
    ) -> list[TimeWindow]:
        """start_time が [start, end] に入る時間枠を取得する。省略時は無制限。"""
        ...

    @abstractmethod
    def bulk_delete(
        self,
        range_start: int,
        range_end: int,
        non_inclusive: bool = False,
    ) -> int:
        """範囲指定で時間枠を一括削除する。

        non_inclusive=True なら範囲に完全に含まれる枠のみ、
        False なら開始または終了が範囲に入る枠を削除する。

        Raises:
            ValidationError: range_end <= range_start
        """
        ...

    # ---------- カテゴリ ----------

    @abstractmethod
    def category_exists(self, name: str) -> bool:
        ...

    @abstractmethod
    def get_categories(self) -> list[str]:
        """カテゴリ名を昇順で返す。"""
        ...

    @abstractmethod
    def add_category(self, name: str) -> None:
        ...

    @abstractmethod
    def rename_category(self, old: str, new: str) -> None:
        """カテゴリ名を変更する。記録済みの時間枠も追従する。"""
        ...

    @abstractmethod
    def delete_category(self, name: str, delete_logged_times: bool = False) -> None:
        """カテゴリを削除する。

        Raises:
            NotFoundError: カテゴリが存在しない
            CategoryInUseError: 時間枠が残っていて delete_logged_times=False
        """
        ...

    # ---------- オプション ----------

    @abstractmethod
    def get_options(self) -> dict[str, str]:
        ...

    @abstractmethod
    def get_option(self, name: str) -> str | None:
        ...

    @abstractmethod
    def set_option(self, name: str, value: str) -> None:
        ...

    @abstractmethod
    def unset_option(self, name: str) -> None:
        ...
