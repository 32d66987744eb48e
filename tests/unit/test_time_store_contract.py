"""Store層の契約テスト。

このテストは TimeStoreInterface の契約を検証する。
どの実装であっても、このテストが通ることを保証する。

使い方:
  1. TimeStoreInterface の実装クラスを作成
  2. fixture `time_store` で実装インスタンスを返す
  3. 全テストがパスすることを確認
"""

import itertools

import pytest

from timeledger.errors import (
    CategoryInUseError,
    NotFoundError,
    OverlapError,
    ValidationError,
)
from timeledger.interfaces.time_store import TimeStoreInterface, TimeWindow


@pytest.fixture
def time_store(tmp_path):
    """Store層の実装インスタンスを返す。"""
    from timeledger.store.sqlite import SqliteTimeStore

    db_path = tmp_path / "test.db"
    store = SqliteTimeStore(str(db_path))
    store.add_category("work")
    store.add_category("play")
    return store


def _assert_invariants(store: TimeStoreInterface) -> None:
    """非重複・未終了枠1件以下・計測中の枠より前の不変条件を検証する。"""
    windows = store.get_windows()
    open_windows = [w for w in windows if w.end_time is None]
    assert len(open_windows) <= 1

    closed = [w for w in windows if w.end_time is not None]
    for a, b in itertools.combinations(closed, 2):
        assert a.end_time < b.start_time or b.end_time < a.start_time

    if open_windows:
        current = open_windows[0]
        for w in closed:
            assert w.start_time < current.start_time
            assert w.end_time < current.start_time


class TestUpsertWindow:
    """時間枠の書き込みの契約テスト。"""

    def test_insert_assigns_id(self, time_store: TimeStoreInterface):
        """新規挿入で id が採番される。"""
        saved = time_store.upsert_window(TimeWindow(category="work", start_time=47))
        assert saved.id == 1
        assert time_store.get_window(1) == TimeWindow(
            id=1, category="work", start_time=47, end_time=None
        )

    def test_second_open_window_overlaps(self, time_store: TimeStoreInterface):
        """計測中の枠がある間は、その後ろに新しい枠を作れない。"""
        time_store.upsert_window(TimeWindow(category="work", start_time=47))

        with pytest.raises(OverlapError):
            time_store.upsert_window(TimeWindow(category="work", start_time=51))
        with pytest.raises(OverlapError):
            time_store.upsert_window(
                TimeWindow(category="work", start_time=40, end_time=51)
            )

    def test_close_then_open_again(self, time_store: TimeStoreInterface):
        """計測中の枠を閉じれば、その後ろに新しい計測中の枠を作れる。"""
        time_store.upsert_window(TimeWindow(category="work", start_time=47))
        time_store.upsert_window(
            TimeWindow(id=1, category="work", start_time=47, end_time=51)
        )
        time_store.upsert_window(TimeWindow(id=2, category="work", start_time=52))

        assert time_store.get_window(2) == TimeWindow(
            id=2, category="work", start_time=52, end_time=None
        )

        # 終了済みの枠や計測中の枠と重なる候補は拒否される
        with pytest.raises(OverlapError):
            time_store.upsert_window(TimeWindow(category="work", start_time=48))
        with pytest.raises(OverlapError):
            time_store.upsert_window(
                TimeWindow(category="work", start_time=40, end_time=48)
            )

        # 自分自身とは重ならない
        time_store.upsert_window(
            TimeWindow(id=2, category="work", start_time=111, end_time=112)
        )
        assert time_store.get_window(2).end_time == 112
        _assert_invariants(time_store)

    def test_overlap_error_names_conflicts(self, time_store: TimeStoreInterface):
        """OverlapError は重なったIDと既存レコードの例を持つ。"""
        time_store.upsert_window(TimeWindow(category="work", start_time=10, end_time=20))
        time_store.upsert_window(TimeWindow(category="play", start_time=30, end_time=40))

        with pytest.raises(OverlapError) as exc_info:
            time_store.upsert_window(
                TimeWindow(category="work", start_time=15, end_time=35)
            )

        assert exc_info.value.conflicting_ids == [1, 2]
        assert exc_info.value.example == TimeWindow(
            id=1, category="work", start_time=10, end_time=20
        )
        assert "overlapped IDs: 1, 2" in str(exc_info.value)

    def test_containing_window_is_rejected(self, time_store: TimeStoreInterface):
        """既存の枠を丸ごと包む候補も重なりとみなす。"""
        time_store.upsert_window(TimeWindow(category="work", start_time=10, end_time=20))

        with pytest.raises(OverlapError):
            time_store.upsert_window(
                TimeWindow(category="play", start_time=5, end_time=30)
            )

    def test_open_window_before_closed_is_rejected(
        self, time_store: TimeStoreInterface
    ):
        """終了済みの枠より前に計測中の枠は作れない。"""
        time_store.upsert_window(TimeWindow(category="work", start_time=10, end_time=20))

        with pytest.raises(OverlapError):
            time_store.upsert_window(TimeWindow(category="play", start_time=5))

    def test_touching_endpoints_overlap(self, time_store: TimeStoreInterface):
        """区間は両端を含むため、端点が一致すると重なる。"""
        time_store.upsert_window(TimeWindow(category="work", start_time=10, end_time=20))

        with pytest.raises(OverlapError):
            time_store.upsert_window(
                TimeWindow(category="work", start_time=20, end_time=30)
            )
        time_store.upsert_window(TimeWindow(category="work", start_time=21, end_time=30))

    def test_failed_upsert_leaves_storage_unchanged(
        self, time_store: TimeStoreInterface
    ):
        """重なりで失敗した書き込みは何も残さない。"""
        time_store.upsert_window(TimeWindow(category="work", start_time=10, end_time=20))
        time_store.upsert_window(TimeWindow(category="play", start_time=30, end_time=40))

        with pytest.raises(OverlapError):
            time_store.upsert_window(
                TimeWindow(id=2, category="play", start_time=15, end_time=40)
            )

        assert time_store.get_window(2) == TimeWindow(
            id=2, category="play", start_time=30, end_time=40
        )

    def test_omitted_end_time_reopens(self, time_store: TimeStoreInterface):
        """end_time を省略した置換で終了時刻がクリアされる。"""
        time_store.upsert_window(TimeWindow(category="work", start_time=10, end_time=20))
        time_store.upsert_window(TimeWindow(id=1, category="work", start_time=10))

        assert time_store.get_window(1).end_time is None

    def test_rejects_end_before_start(self, time_store: TimeStoreInterface):
        with pytest.raises(ValidationError):
            time_store.upsert_window(
                TimeWindow(category="work", start_time=20, end_time=10)
            )

    def test_rejects_negative_start(self, time_store: TimeStoreInterface):
        with pytest.raises(ValidationError):
            time_store.upsert_window(TimeWindow(category="work", start_time=-1))

    def test_unknown_category(self, time_store: TimeStoreInterface):
        """存在しないカテゴリへの書き込みは NotFoundError。"""
        with pytest.raises(NotFoundError):
            time_store.upsert_window(TimeWindow(category="sleep", start_time=10))
        assert time_store.get_windows() == []

    def test_invariants_hold_after_mixed_writes(
        self, time_store: TimeStoreInterface
    ):
        """成功・失敗が混ざった書き込み列の後も不変条件が保たれる。"""
        candidates = [
            TimeWindow(category="work", start_time=0, end_time=10),
            TimeWindow(category="play", start_time=5, end_time=15),
            TimeWindow(category="play", start_time=11, end_time=19),
            TimeWindow(category="work", start_time=12),
            TimeWindow(category="work", start_time=30),
            TimeWindow(category="play", start_time=25, end_time=26),
            TimeWindow(category="play", start_time=1, end_time=40),
            TimeWindow(category="work", start_time=50),
        ]
        for candidate in candidates:
            try:
                time_store.upsert_window(candidate)
            except OverlapError:
                pass
            _assert_invariants(time_store)


class TestOpenWindows:
    """計測中の枠の取得・終了の契約テスト。"""

    def test_no_open_window(self, time_store: TimeStoreInterface):
        assert time_store.get_last_open_window() is None
        assert time_store.get_open_windows() == []

    def test_last_open_window(self, time_store: TimeStoreInterface):
        time_store.upsert_window(TimeWindow(category="work", start_time=10, end_time=20))
        time_store.start_timing("play", 30)

        current = time_store.get_last_open_window()
        assert current is not None
        assert current.category == "play"
        assert current.start_time == 30

    def test_close_open_windows(self, time_store: TimeStoreInterface):
        """一括終了は計測中の枠にだけ終了時刻を入れる。"""
        time_store.upsert_window(TimeWindow(category="work", start_time=10, end_time=20))
        time_store.start_timing("play", 30)

        assert time_store.close_open_windows(45) == 1
        assert time_store.get_window(1).end_time == 20
        assert time_store.get_window(2).end_time == 45
        assert time_store.close_open_windows(50) == 0

    def test_latest_end_time(self, time_store: TimeStoreInterface):
        """計測中の枠は無視して、終了済みの枠の最も遅い終了時刻を返す。"""
        assert time_store.get_latest_end_time() is None

        time_store.upsert_window(TimeWindow(category="work", start_time=30, end_time=40))
        time_store.upsert_window(TimeWindow(category="work", start_time=10, end_time=20))
        time_store.start_timing("play", 50)

        assert time_store.get_latest_end_time() == 40

    def test_close_never_before_start(self, time_store: TimeStoreInterface):
        """開始より前の時刻で閉じようとしても開始時刻で閉じる。"""
        time_store.start_timing("work", 100)
        time_store.close_open_windows(90)
        assert time_store.get_window(1).end_time == 100


class TestDeleteWindow:
    """単一削除の契約テスト。"""

    def test_delete_existing(self, time_store: TimeStoreInterface):
        time_store.upsert_window(TimeWindow(category="work", start_time=10, end_time=20))
        assert time_store.delete_window(1) == 1
        with pytest.raises(NotFoundError):
            time_store.get_window(1)

    def test_delete_missing_returns_zero(self, time_store: TimeStoreInterface):
        assert time_store.delete_window(99) == 0


class TestGetWindows:
    """範囲取得の契約テスト。"""

    def test_returns_empty_for_no_data(self, time_store: TimeStoreInterface):
        assert time_store.get_windows() == []

    def test_filters_by_start_time(self, time_store: TimeStoreInterface):
        """start_time が [start, end] に入るものだけ返る。"""
        time_store.upsert_window(TimeWindow(category="work", start_time=10, end_time=20))
        time_store.upsert_window(TimeWindow(category="work", start_time=30, end_time=40))
        time_store.upsert_window(TimeWindow(category="work", start_time=50, end_time=60))

        assert [w.start_time for w in time_store.get_windows(start=30)] == [30, 50]
        assert [w.start_time for w in time_store.get_windows(end=30)] == [10, 30]
        assert [w.start_time for w in time_store.get_windows(15, 45)] == [30]

    def test_returns_sorted_by_start_time(self, time_store: TimeStoreInterface):
        time_store.upsert_window(TimeWindow(category="work", start_time=50, end_time=60))
        time_store.upsert_window(TimeWindow(category="work", start_time=10, end_time=20))

        result = time_store.get_windows()
        assert result[0].start_time < result[1].start_time


class TestBulkDelete:
    """範囲一括削除の契約テスト。"""

    @pytest.fixture
    def populated(self, time_store: TimeStoreInterface):
        # A=[10,20] と B=[15,25] は重なるため upsert を通さず直接挿入する
        time_store._conn.execute(
            "INSERT INTO time_windows (id, category, start_time, end_time)"
            " VALUES (1, 'work', 10, 20), (2, 'play', 15, 25), (3, 'work', 30, 40)"
        )
        return time_store

    def test_inclusive_deletes_touching(self, populated: TimeStoreInterface):
        """開始または終了が範囲に入る枠を削除する。"""
        assert populated.bulk_delete(12, 22) == 2
        assert [w.id for w in populated.get_windows()] == [3]

    def test_non_inclusive_deletes_contained_only(
        self, populated: TimeStoreInterface
    ):
        """完全に含まれる枠がなければ何も削除しない。"""
        assert populated.bulk_delete(12, 22, non_inclusive=True) == 0
        assert len(populated.get_windows()) == 3

        assert populated.bulk_delete(10, 25, non_inclusive=True) == 2
        assert [w.id for w in populated.get_windows()] == [3]

    def test_non_inclusive_skips_open_window(self, time_store: TimeStoreInterface):
        time_store.start_timing("work", 10)
        assert time_store.bulk_delete(0, 100, non_inclusive=True) == 0
        assert time_store.bulk_delete(0, 100) == 1

    def test_rejects_empty_range(self, time_store: TimeStoreInterface):
        with pytest.raises(ValidationError, match="must be greater than"):
            time_store.bulk_delete(20, 20)
        with pytest.raises(ValidationError):
            time_store.bulk_delete(20, 10)


class TestCategories:
    """カテゴリの契約テスト。"""

    def test_add_and_list(self, time_store: TimeStoreInterface):
        assert time_store.get_categories() == ["play", "work"]
        assert time_store.category_exists("work")
        assert not time_store.category_exists("sleep")

    def test_add_duplicate(self, time_store: TimeStoreInterface):
        with pytest.raises(ValidationError):
            time_store.add_category("work")

    def test_delete_in_use_requires_cascade(self, time_store: TimeStoreInterface):
        """記録が残っているカテゴリはカスケード指定なしでは削除できない。"""
        time_store.upsert_window(TimeWindow(category="work", start_time=10, end_time=20))

        with pytest.raises(CategoryInUseError):
            time_store.delete_category("work")
        assert time_store.category_exists("work")
        assert len(time_store.get_windows()) == 1

        time_store.delete_category("work", delete_logged_times=True)
        assert not time_store.category_exists("work")
        assert time_store.get_windows() == []

    def test_delete_unused(self, time_store: TimeStoreInterface):
        time_store.delete_category("play")
        assert time_store.get_categories() == ["work"]

    def test_delete_missing(self, time_store: TimeStoreInterface):
        with pytest.raises(NotFoundError):
            time_store.delete_category("sleep")

    def test_rename_updates_windows(self, time_store: TimeStoreInterface):
        """カテゴリ名の変更は記録済みの時間枠にも反映される。"""
        time_store.start_timing("work", 47)
        time_store.rename_category("work", "focus")

        assert time_store.get_categories() == ["focus", "play"]
        assert time_store.get_window(1).category == "focus"

    def test_rename_missing(self, time_store: TimeStoreInterface):
        with pytest.raises(NotFoundError):
            time_store.rename_category("sleep", "nap")

    def test_rename_to_existing(self, time_store: TimeStoreInterface):
        with pytest.raises(ValidationError):
            time_store.rename_category("work", "play")


class TestOptions:
    """オプションの契約テスト。"""

    def test_dbversion_recorded(self, time_store: TimeStoreInterface):
        assert time_store.get_option("dbversion") is not None

    def test_set_and_unset(self, time_store: TimeStoreInterface):
        time_store.set_option("end-of-day", "17:00")
        assert time_store.get_option("end-of-day") == "17:00"
        assert time_store.get_options()["end-of-day"] == "17:00"

        time_store.set_option("end-of-day", "18:30")
        assert time_store.get_option("end-of-day") == "18:30"

        time_store.unset_option("end-of-day")
        assert time_store.get_option("end-of-day") is None


class TestTransaction:
    """トランザクションの契約テスト。"""

    def test_rollback_on_error(self, time_store: TimeStoreInterface):
        """例外で抜けたトランザクション内の書き込みは全て取り消される。"""
        with pytest.raises(OverlapError):
            with time_store.transaction():
                time_store.upsert_window(
                    TimeWindow(category="work", start_time=10, end_time=20)
                )
                time_store.upsert_window(
                    TimeWindow(category="work", start_time=15, end_time=25)
                )

        assert time_store.get_windows() == []

    def test_nested_transaction_joins_outer(self, time_store: TimeStoreInterface):
        with time_store.transaction():
            with time_store.transaction():
                time_store.start_timing("work", 10)
            time_store.close_open_windows(20)

        assert time_store.get_window(1).end_time == 20

    def test_change_token_moves_on_write(self, time_store: TimeStoreInterface):
        before = time_store.change_token()
        time_store.start_timing("work", 10)
        assert time_store.change_token() != before
