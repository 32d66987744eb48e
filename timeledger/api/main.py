"""FastAPIアプリケーション。

計測・修正・削除・エクスポートの各操作を台帳サービス経由で提供する。
台帳の例外はここで HTTP ステータスへ変換する。
"""

import io
import json
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Annotated

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel

from timeledger.config import configure_logging
from timeledger.dependencies import get_event_bus, get_ledger, get_time_store
from timeledger.errors import (
    CategoryInUseError,
    EmptyResultError,
    LedgerError,
    NotFoundError,
    OverlapError,
    ValidationError,
)
from timeledger.export.formats import MEDIA_TYPES, ExportFormat, render_export
from timeledger.interfaces.time_store import TimeStoreInterface, TimeWindow
from timeledger.ledger.service import TimeLedger

LedgerDep = Annotated[TimeLedger, Depends(get_ledger)]
StoreDep = Annotated[TimeStoreInterface, Depends(get_time_store)]
EventBusDep = Annotated[object, Depends(get_event_bus)]


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    yield


app = FastAPI(
    title="timeledger API",
    version="1.0.0",
    lifespan=lifespan,
)


# ---------- Pydantic モデル ----------


class WindowResponse(BaseModel):
    """1件の時間枠レスポンス。"""

    id: int | None
    category: str
    start_time: int
    end_time: int | None


class CategoryRequest(BaseModel):
    """POST /api/categories のリクエストボディ。"""

    name: str


class RenameCategoryRequest(BaseModel):
    """PUT /api/categories/{name} のリクエストボディ。"""

    new_name: str


class OptionRequest(BaseModel):
    """PUT /api/options/{name} のリクエストボディ。"""

    value: str


class StartTimingRequest(BaseModel):
    """POST /api/timing/start のリクエストボディ。"""

    category: str


class AmendWindowRequest(BaseModel):
    """PATCH /api/windows/{id} のリクエストボディ。省略した項目は変更しない。"""

    start_time: datetime | None = None
    end_time: datetime | None = None
    category: str | None = None


class BulkDeleteRequest(BaseModel):
    """POST /api/windows/bulk-delete のリクエストボディ。"""

    start_time: datetime
    end_time: datetime
    non_inclusive: bool = False


# ---------- ヘルパー ----------


def _to_epoch(dt: datetime | None) -> int | None:
    """datetime → エポック秒。タイムゾーンなしはローカル時刻として扱う。"""
    if dt is None:
        return None
    return int(dt.timestamp())


def _to_window_response(window: TimeWindow) -> WindowResponse:
    return WindowResponse(
        id=window.id,
        category=window.category,
        start_time=window.start_time,
        end_time=window.end_time,
    )


_ERROR_STATUS: list[tuple[type[LedgerError], int]] = [
    (ValidationError, 400),
    (OverlapError, 409),
    (NotFoundError, 404),
    (CategoryInUseError, 409),
    (EmptyResultError, 404),
]


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    """台帳の例外を HTTP エラーへ変換する。"""
    status_code = next(
        (code for cls, code in _ERROR_STATUS if isinstance(exc, cls)), 400
    )
    content: dict = {"detail": str(exc)}
    if isinstance(exc, OverlapError):
        content["conflicting_ids"] = exc.conflicting_ids
    return JSONResponse(status_code=status_code, content=content)


# ---------- エンドポイント ----------


@app.get("/api/health")
async def health_check():
    """ヘルスチェック。"""
    return {"status": "ok"}


@app.get("/api/config")
async def get_config(ledger: LedgerDep):
    """オプションと登録済みカテゴリを取得する。"""
    return ledger.get_config()


@app.post("/api/categories")
async def add_category(body: CategoryRequest, ledger: LedgerDep):
    """カテゴリを追加する。"""
    ledger.add_category(body.name)
    return {"added": body.name}


@app.put("/api/categories/{name}")
async def rename_category(name: str, body: RenameCategoryRequest, ledger: LedgerDep):
    """カテゴリ名を変更する。記録済みの時間枠も追従する。"""
    ledger.rename_category(name, body.new_name)
    return {"renamed": body.new_name}


@app.delete("/api/categories/{name}")
async def delete_category(
    name: str,
    ledger: LedgerDep,
    delete_logged_times: bool = False,
):
    """カテゴリを削除する。記録が残っている場合は delete_logged_times が必要。"""
    ledger.delete_category(name, delete_logged_times)
    return {"deleted": name}


@app.put("/api/options/{name}")
async def set_option(name: str, body: OptionRequest, ledger: LedgerDep):
    """グローバルオプションを設定する。"""
    ledger.set_option(name, body.value)
    return {"options": ledger.get_config()["options"]}


@app.delete("/api/options/{name}")
async def unset_option(name: str, ledger: LedgerDep):
    """グローバルオプションを削除する。"""
    ledger.unset_option(name)
    return {"options": ledger.get_config()["options"]}


@app.post("/api/timing/start")
async def start_timing(body: StartTimingRequest, ledger: LedgerDep):
    """計測を開始する。計測中の枠があれば先に終了させる。"""
    window = ledger.start_timing(body.category)
    return _to_window_response(window)


@app.post("/api/timing/stop")
async def stop_timing(ledger: LedgerDep):
    """計測を停止する。"""
    window = ledger.stop_timing()
    return {"stopped": _to_window_response(window) if window else None}


@app.get("/api/timing/current")
async def currently_timing(ledger: LedgerDep):
    """計測中の時間枠と経過秒数を取得する。"""
    current = ledger.currently_timing()
    if current is None:
        return {"window": None, "elapsed_seconds": None}
    window, elapsed = current
    return {"window": _to_window_response(window), "elapsed_seconds": elapsed}


@app.get("/api/windows")
async def get_windows(
    ledger: LedgerDep,
    start: datetime | None = None,
    end: datetime | None = None,
):
    """開始時刻で範囲を絞って時間枠を取得する。"""
    windows = ledger.get_windows(_to_epoch(start), _to_epoch(end))
    return {"windows": [_to_window_response(w) for w in windows]}


@app.get("/api/windows/{window_id}")
async def get_window(window_id: int, ledger: LedgerDep):
    """時間枠を1件取得する。存在しなければ 404。"""
    return _to_window_response(ledger.get_window(window_id))


@app.patch("/api/windows/{window_id}")
async def amend_window(window_id: int, body: AmendWindowRequest, ledger: LedgerDep):
    """時間枠を修正する。重なりが生じる場合は 409。"""
    window = ledger.amend_window(
        window_id,
        start_time=_to_epoch(body.start_time),
        end_time=_to_epoch(body.end_time),
        category=body.category,
    )
    return _to_window_response(window)


@app.delete("/api/windows/{window_id}")
async def delete_window(window_id: int, ledger: LedgerDep):
    """時間枠を削除する。存在しなければ 404。"""
    ledger.delete_window(window_id)
    return {"deleted": window_id}


@app.post("/api/windows/bulk-delete")
async def bulk_delete(body: BulkDeleteRequest, ledger: LedgerDep):
    """範囲内の時間枠を一括削除する。"""
    deleted = ledger.bulk_delete(
        _to_epoch(body.start_time),
        _to_epoch(body.end_time),
        non_inclusive=body.non_inclusive,
    )
    return {"deleted": deleted}


@app.get("/api/export")
async def export(
    store: StoreDep,
    format: ExportFormat = ExportFormat.JSON,
    start: datetime | None = None,
    end: datetime | None = None,
):
    """時間枠を指定形式で出力する。summary で対象が0件なら 404。"""
    start_ts, end_ts = _to_epoch(start), _to_epoch(end)
    windows = store.get_windows(start_ts, end_ts)
    sink = io.StringIO()
    render_export(windows, format, sink, start_ts, end_ts)
    return Response(content=sink.getvalue(), media_type=MEDIA_TYPES[format])


@app.get("/api/events")
async def stream_events(bus: EventBusDep):
    """計測の開始・停止イベントを Server-Sent Events で中継する。"""

    async def _stream():
        async with bus.subscribe() as queue:
            while True:
                message = await queue.get()
                yield (
                    f"event: {message['event']}\n"
                    f"data: {json.dumps(message['data'])}\n\n"
                )

    return StreamingResponse(_stream(), media_type="text/event-stream")
