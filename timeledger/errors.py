"""台帳操作の例外階層。

全ての例外は LedgerError を基底とし、発生したトランザクションを
ロールバックさせたうえでコマンド層（API）まで伝播する。
リトライは行わない。
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from timeledger.interfaces.time_store import TimeWindow


class LedgerError(Exception):
    """台帳操作の基底例外。"""


class ValidationError(LedgerError, ValueError):
    """入力値が不正（HH:MM 形式違反、範囲の逆転など）。"""


class NotFoundError(LedgerError, LookupError):
    """存在しないIDまたはカテゴリを参照した。"""


class CategoryInUseError(LedgerError):
    """記録が残っているカテゴリをカスケード指定なしで削除しようとした。"""


class EmptyResultError(LedgerError):
    """集計対象の記録が1件もない。"""


class OverlapError(LedgerError):
    """候補の時間枠が既存の時間枠と重なる。

    Attributes:
        conflicting_ids: 重なっている既存レコードのID（start_time 昇順）
        candidate: 書き込もうとした時間枠
        example: 重なっている既存レコードの1件目（診断用）
    """

    def __init__(
        self,
        conflicting_ids: list[int],
        candidate: TimeWindow,
        example: TimeWindow | None = None,
    ) -> None:
        self.conflicting_ids = conflicting_ids
        self.candidate = candidate
        self.example = example
        ids = ", ".join(str(i) for i in conflicting_ids)
        super().__init__(
            "Attempted to insert time that overlaps with other times! "
            f"(overlapped IDs: {ids}) (time to insert: {candidate}) "
            f"(example overlap: {example})"
        )
