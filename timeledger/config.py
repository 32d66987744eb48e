"""設定値。

デプロイごとに変わる値はここに集約し、環境変数で上書きできるようにする。
"""

import logging
import os

VERSION = "1.0.0"

DB_PATH: str = os.environ.get("TIMELEDGER_DB", "data/timeledger.db")
"""SQLiteデータベースファイルのパス。"""

WATCH_INTERVAL: float = float(os.environ.get("TIMELEDGER_WATCH_INTERVAL", "1.0"))
"""watchモードでストレージの変更を確認する間隔（秒）。"""

LOG_LEVEL: str = os.environ.get("TIMELEDGER_LOG_LEVEL", "INFO")
"""ログレベル名（DEBUG, INFO, WARNING, ...）。"""


def configure_logging(level: str | None = None) -> None:
    """ルートロガーを設定する。"""
    logging.basicConfig(
        level=(level or LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
