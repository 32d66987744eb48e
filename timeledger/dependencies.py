"""DI用ファクトリ関数。

timeledger/ 直下に配置することで、api/ から store/ や notify/ への
直接依存を避けつつ、FastAPI の Depends() で注入できる。
"""

from pathlib import Path

from timeledger import config
from timeledger.interfaces.notifier import NotifierInterface
from timeledger.interfaces.time_store import TimeStoreInterface
from timeledger.ledger.service import TimeLedger

_time_store: TimeStoreInterface | None = None
_event_bus = None
_notifier: NotifierInterface | None = None
_ledger: TimeLedger | None = None


def get_time_store() -> TimeStoreInterface:
    """TimeStoreのシングルトンインスタンスを返す。"""
    global _time_store
    if _time_store is None:
        from timeledger.store.sqlite import SqliteTimeStore

        if config.DB_PATH != ":memory:":
            Path(config.DB_PATH).parent.mkdir(parents=True, exist_ok=True)
        _time_store = SqliteTimeStore(config.DB_PATH)
    return _time_store


def get_event_bus():
    """EventBusのシングルトンインスタンスを返す。"""
    global _event_bus
    if _event_bus is None:
        from timeledger.notify.event_bus import EventBus

        _event_bus = EventBus()
    return _event_bus


def get_notifier() -> NotifierInterface:
    """EventBusへ配信する通知先のシングルトンインスタンスを返す。"""
    global _notifier
    if _notifier is None:
        from timeledger.notify.event_bus import EventBusNotifier

        _notifier = EventBusNotifier(get_event_bus())
    return _notifier


def get_ledger() -> TimeLedger:
    """TimeLedgerのシングルトンインスタンスを返す。"""
    global _ledger
    if _ledger is None:
        _ledger = TimeLedger(get_time_store(), get_notifier())
    return _ledger


def _reset_all() -> None:
    """全シングルトンをリセットする（テスト用）。"""
    global _time_store, _event_bus, _notifier, _ledger
    _time_store = None
    _event_bus = None
    _notifier = None
    _ledger = None
