"""台帳サービス。計測・修正・削除操作のオーケストレーター."""

import logging
from collections.abc import Callable
from dataclasses import replace

from timeledger.errors import NotFoundError, ValidationError
from timeledger.interfaces.notifier import NotifierInterface
from timeledger.interfaces.time_store import (
    OptionName,
    TimeStoreInterface,
    TimeWindow,
)
from timeledger.ledger.boundary import (
    HourMinute,
    end_of_day_boundary,
    parse_hour_minute,
)
from timeledger.ledger.rollover import RolloverResolver, epoch_now

logger = logging.getLogger(__name__)


class TimeLedger:
    """台帳サービス.

    論理操作1つにつき Store のトランザクションを1つ張り、
    不変条件の検査が全て通った場合にのみコミットする。
    通知はコミット後に行い、通知の失敗は記録だけして握りつぶす。
    """

    def __init__(
        self,
        store: TimeStoreInterface,
        notifier: NotifierInterface | None = None,
        clock: Callable[[], int] = epoch_now,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._clock = clock
        self._resolver = RolloverResolver(store, clock)

    # ---------- 計測 ----------

    def start_timing(self, category: str) -> TimeWindow:
        """指定カテゴリの計測を開始する.

        1. カテゴリの存在を確認
        2. 計測中の枠があれば終業時刻設定に従って終了
        3. 現在時刻（同じ秒に終わった枠があればその1秒後）で新しい計測中の枠を作成

        同じ秒のうちに2回以上切り替えると、前の枠が現在時刻より後まで
        続くため OverlapError となる。
        """
        with self._store.transaction():
            if not self._store.category_exists(category):
                raise NotFoundError(
                    f"Category '{category}' does not exist in the database, "
                    "add it before timing it"
                )
            previous = self._store.get_last_open_window()
            self._resolver.close_open_windows(end_of_day_boundary(self._store))
            start_time = self._clock()
            # 区間は両端を含むので、ちょうど今終わった枠があれば1秒後から始める。
            # それより先まで続く枠があれば重なりとして OverlapError に任せる。
            if self._store.get_latest_end_time() == start_time:
                start_time += 1
            window = self._store.start_timing(category, start_time)

        logger.info("Started timing %r (window %s)", category, window.id)
        if previous is not None:
            self._notify("timing_stopped", previous.category)
        self._notify(
            "timing_started",
            category,
            previous.category if previous is not None else None,
        )
        return window

    def stop_timing(self) -> TimeWindow | None:
        """計測を停止する.

        Returns:
            終了させた時間枠。計測中でなければ None。
        """
        with self._store.transaction():
            previous = self._store.get_last_open_window()
            self._resolver.close_open_windows(end_of_day_boundary(self._store))
            if previous is not None:
                previous = self._store.get_window(previous.id)

        if previous is None:
            return None
        logger.info("Stopped timing %r (window %s)", previous.category, previous.id)
        self._notify("timing_stopped", previous.category)
        return previous

    def currently_timing(self) -> tuple[TimeWindow, int] | None:
        """計測中の時間枠と経過秒数を返す。計測中でなければ None。"""
        window = self._store.get_last_open_window()
        if window is None:
            self._notify("currently_timing", None, None)
            return None
        # 同じ秒の切り替えで開始が1秒先になった枠は 0 秒とみなす
        elapsed = max(self._clock() - window.start_time, 0)
        self._notify("currently_timing", window, elapsed)
        return window, elapsed

    # ---------- 時間枠の参照・修正 ----------

    def get_window(self, window_id: int) -> TimeWindow:
        return self._store.get_window(window_id)

    def get_windows(
        self, start: int | None = None, end: int | None = None
    ) -> list[TimeWindow]:
        return self._store.get_windows(start, end)

    def amend_window(
        self,
        window_id: int,
        start_time: int | None = None,
        end_time: int | None = None,
        category: str | None = None,
    ) -> TimeWindow:
        """時間枠の開始・終了・カテゴリを修正する.

        指定された項目だけを置き換え、不変条件を再検証して書き戻す。
        重なりが生じる場合は OverlapError となり、何も変更されない。
        """
        with self._store.transaction():
            window = self._store.get_window(window_id)
            if start_time is not None:
                window = replace(window, start_time=start_time)
            if end_time is not None:
                window = replace(window, end_time=end_time)
            if category is not None:
                if not self._store.category_exists(category):
                    raise NotFoundError(f"Category '{category}' does not exist")
                window = replace(window, category=category)
            window = self._store.upsert_window(window)

        logger.info("Amended window %s", window_id)
        return window

    def delete_window(self, window_id: int) -> None:
        with self._store.transaction():
            deleted = self._store.delete_window(window_id)
        if deleted == 0:
            raise NotFoundError("Invalid time ID")
        logger.info("Deleted window %s", window_id)

    def bulk_delete(
        self, range_start: int, range_end: int, non_inclusive: bool = False
    ) -> int:
        """範囲内の時間枠を一括削除する.

        Returns:
            削除した件数
        """
        with self._store.transaction():
            deleted = self._store.bulk_delete(range_start, range_end, non_inclusive)
        logger.info("Deleted %d time records", deleted)
        return deleted

    # ---------- カテゴリ ----------

    def add_category(self, name: str) -> None:
        with self._store.transaction():
            self._store.add_category(name)

    def rename_category(self, old: str, new: str) -> None:
        with self._store.transaction():
            self._store.rename_category(old, new)

    def delete_category(self, name: str, delete_logged_times: bool = False) -> None:
        with self._store.transaction():
            self._store.delete_category(name, delete_logged_times)
        logger.info("Deleted category %r", name)

    # ---------- オプション ----------

    def set_option(self, name: str, value: str) -> None:
        """オプションを設定する。end-of-day は HH:MM として検証し正規化する。"""
        option = self._option_name(name)
        if option is OptionName.END_OF_DAY:
            value = str(parse_hour_minute(value))
        with self._store.transaction():
            self._store.set_option(option.value, value)

    def unset_option(self, name: str) -> None:
        option = self._option_name(name)
        with self._store.transaction():
            self._store.unset_option(option.value)

    def end_of_day_boundary(self) -> HourMinute | None:
        return end_of_day_boundary(self._store)

    def get_config(self) -> dict:
        """オプションと登録済みカテゴリを返す。"""
        return {
            "options": self._store.get_options(),
            "categories": self._store.get_categories(),
        }

    # ---------- 内部 ----------

    @staticmethod
    def _option_name(name: str) -> OptionName:
        try:
            return OptionName(name)
        except ValueError as e:
            raise ValidationError(f"Unknown Option Name {name!r}") from e

    def _notify(self, method: str, *args) -> None:
        """通知先を呼ぶ。失敗してもコミット済みの操作は取り消さない。"""
        if self._notifier is None:
            return
        try:
            getattr(self._notifier, method)(*args)
        except Exception:
            logger.warning("Notifier %s failed", method, exc_info=True)
