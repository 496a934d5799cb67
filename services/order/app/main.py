"""
Order Service — FastAPI エントリーポイント

注文ドキュメントの一覧・取得・作成・部分更新を提供する。
読み取りはプロセスローカルのキャッシュを経由し (リードスルー)、
書き込みはストアに書いた後でキャッシュを更新する (ライトスルー)。

┌────────┐   HTTP   ┌──────────────┐  miss   ┌──────────────┐
│ Client │ ───────▶ │ OrderCache   │ ──────▶ │ PostgreSQL   │
│        │          │ (非正コピー) │ ◀────── │ orders (正)  │
└────────┘          └──────────────┘  fill   └──────────────┘
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from . import commands, queries
from .cache import OrderCache
from .config import Settings, configure_logging, load_settings
from .errors import MalformedRequest, OrderServiceError, OrderValidationError
from .models import Order, PartialOrder, violations_from_errors
from .store import OrderStore, create_store

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Query Endpoints (Read 側) ────────────────────

@router.get("/orders", response_model=list[Order])
async def list_orders(request: Request):
    """全注文をストアから取得し、キャッシュを埋め直す"""
    state = request.app.state
    return await queries.list_orders(state.store, state.cache)


@router.get("/orders/{order_uid}", response_model=Order)
async def get_order(order_uid: str, request: Request):
    """指定注文を取得（キャッシュ優先）"""
    state = request.app.state
    return await queries.get_order(state.store, state.cache, order_uid)


# ── Command Endpoints (Write 側) ─────────────────

@router.post("/orders", response_model=Order, status_code=201)
async def create_order(order: Order, request: Request):
    """注文作成コマンド"""
    state = request.app.state
    return await commands.create_order(state.store, state.cache, order)


@router.put("/orders/{order_uid}", response_model=Order)
async def update_order(order_uid: str, patch: PartialOrder, request: Request):
    """部分更新コマンド（ボディ中の order_uid は無視される）"""
    state = request.app.state
    return await commands.update_order(state.store, state.cache, order_uid, patch)


@router.get("/health")
async def health():
    return {"status": "ok", "service": "order-service"}


# ── 例外 → HTTP レスポンス ───────────────────────

async def handle_service_error(request: Request, exc: OrderServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    body: dict = {"detail": exc.message}
    if isinstance(exc, OrderValidationError):
        body["errors"] = exc.violations
    return JSONResponse(status_code=exc.status_code, content=body)


async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    FastAPI のボディ検証エラーを 400 に揃える。

    ボディ全体が JSON でない / オブジェクトでない → MalformedRequest
    それ以外はフィールド単位の OrderValidationError
    """
    errors = []
    for error in exc.errors():
        loc = tuple(error["loc"])
        if error["type"] == "json_invalid" or loc == ("body",):
            return await handle_service_error(request, MalformedRequest())
        errors.append({**error, "loc": loc[1:] if loc[:1] == ("body",) else loc})
    return await handle_service_error(request, OrderValidationError(violations_from_errors(errors)))


# ── アプリケーション ─────────────────────────────

def create_app(settings: Settings | None = None, store: OrderStore | None = None) -> FastAPI:
    """
    アプリケーションを組み立てる。

    store を渡した場合はそれを使い (テスト用)、渡さなければ起動時に
    設定から Postgres ストアを作る。ストアとキャッシュは app.state に
    保持され、プロセス終了まで生きる。
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = None
        active_store = store
        if active_store is None:
            config = settings or load_settings()
            active_store, engine = create_store(config.database_url, config.store_timeout)
        await active_store.ensure_schema()
        app.state.store = active_store
        app.state.cache = OrderCache()
        yield
        if engine is not None:
            await engine.dispose()

    app = FastAPI(title="Order Service", lifespan=lifespan)
    app.include_router(router)
    app.add_exception_handler(OrderServiceError, handle_service_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation)
    return app


app = create_app()


def run() -> None:
    """order-service コマンドのエントリーポイント"""
    settings = load_settings()
    configure_logging(settings.log_level)
    logger.info("Listening on: %s:%d", settings.host, settings.port)
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_config=None,
    )
