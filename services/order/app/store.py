"""
Order Service — 永続化アダプタ

注文ドキュメントを単一テーブル orders(order_uid, data) に保存する。
data 列は Order 全体を JSON にシリアライズしたもので、
order_uid 列はキーとして使うためだけに非正規化してある。

ストアが唯一の正 (authoritative) であり、キャッシュはそのコピーにすぎない。
"""

import asyncio
import logging
from collections import Counter
from typing import Any, Awaitable, Protocol, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from .errors import CorruptRow, OrderConflict, OrderNotFound, StoreError
from .models import Order, decode_order, encode_order

logger = logging.getLogger(__name__)

T = TypeVar("T")

CREATE_TABLE = """
    CREATE TABLE IF NOT EXISTS orders(
        order_uid VARCHAR PRIMARY KEY,
        data JSONB NOT NULL
    )
"""


class OrderStore(Protocol):
    """ハンドラが依存するストアの契約。Postgres 実装とメモリ実装がある。"""

    async def ensure_schema(self) -> None: ...

    async def insert(self, order: Order) -> None: ...

    async def replace(self, order_uid: str, order: Order) -> None: ...

    async def fetch(self, order_uid: str) -> Order: ...

    async def fetch_all(self) -> list[Order]: ...


def decode_row(order_uid: str, raw: Any) -> Order:
    """
    1 行を Order に復元する。

    デシリアライズ失敗、または列の order_uid とドキュメントの
    order_uid が食い違う場合は CorruptRow。
    """
    try:
        order = decode_order(raw)
    except ValueError as exc:
        raise CorruptRow(order_uid) from exc
    if order.order_uid != order_uid:
        raise CorruptRow(order_uid)
    return order


# ── PostgreSQL 実装 ──────────────────────────────


class PostgresOrderStore:
    """SQLAlchemy の AsyncSession 上で生 SQL を発行するストア"""

    def __init__(self, session_factory: sessionmaker, timeout: float = 5.0) -> None:
        self.session_factory = session_factory
        self.timeout = timeout

    async def _run(self, operation: str, work: Awaitable[T]) -> T:
        """タイムアウトとドライバ例外を StoreError に揃える。"""
        try:
            return await asyncio.wait_for(work, self.timeout)
        except asyncio.TimeoutError as exc:
            logger.error("Store %s timed out after %.1fs", operation, self.timeout)
            raise StoreError(f"Order store {operation} timed out") from exc
        except SQLAlchemyError as exc:
            logger.exception("Store %s failed", operation)
            raise StoreError(f"Order store {operation} failed") from exc

    async def ensure_schema(self) -> None:
        """orders テーブルがなければ作成する（冪等）。"""

        async def work() -> None:
            async with self.session_factory() as session:
                await session.execute(text(CREATE_TABLE))
                await session.commit()

        await self._run("ensure_schema", work())
        logger.info("Ensured orders table exists")

    async def insert(self, order: Order) -> None:
        """
        新しい注文を追記する。

        ON CONFLICT DO NOTHING + RETURNING で、既存キーなら
        行が返らない → OrderConflict として検知する。
        """

        async def work() -> bool:
            async with self.session_factory() as session:
                result = await session.execute(
                    text("""
                        INSERT INTO orders (order_uid, data)
                        VALUES (:order_uid, CAST(:data AS JSONB))
                        ON CONFLICT (order_uid) DO NOTHING
                        RETURNING order_uid
                    """),
                    {"order_uid": order.order_uid, "data": encode_order(order)},
                )
                inserted = result.fetchone() is not None
                await session.commit()
                return inserted

        if not await self._run("insert", work()):
            raise OrderConflict(order.order_uid)

    async def replace(self, order_uid: str, order: Order) -> None:
        """data 列を丸ごと上書きする。行がなければ OrderNotFound。"""

        async def work() -> bool:
            async with self.session_factory() as session:
                result = await session.execute(
                    text("""
                        UPDATE orders
                        SET data = CAST(:data AS JSONB)
                        WHERE order_uid = :order_uid
                        RETURNING order_uid
                    """),
                    {"order_uid": order_uid, "data": encode_order(order)},
                )
                updated = result.fetchone() is not None
                await session.commit()
                return updated

        if not await self._run("replace", work()):
            raise OrderNotFound(order_uid)

    async def fetch(self, order_uid: str) -> Order:
        async def work() -> Any:
            async with self.session_factory() as session:
                result = await session.execute(
                    text("SELECT order_uid, data FROM orders WHERE order_uid = :order_uid"),
                    {"order_uid": order_uid},
                )
                return result.fetchone()

        row = await self._run("fetch", work())
        if not row:
            raise OrderNotFound(order_uid)
        try:
            return decode_row(row.order_uid, row.data)
        except CorruptRow:
            logger.error("Corrupt order row: order_uid=%s", order_uid)
            raise

    async def fetch_all(self) -> list[Order]:
        """全注文を返す。壊れた行はログに残してスキップする。順序は不定。"""

        async def work() -> list[Any]:
            async with self.session_factory() as session:
                result = await session.execute(text("SELECT order_uid, data FROM orders"))
                return list(result.fetchall())

        orders = []
        for row in await self._run("fetch_all", work()):
            try:
                orders.append(decode_row(row.order_uid, row.data))
            except CorruptRow:
                logger.error("Skipping corrupt order row: order_uid=%s", row.order_uid)
        return orders


# ── メモリ実装 (テストダブル) ────────────────────


class InMemoryOrderStore:
    """
    Postgres 実装と同じ契約を持つメモリ上のストア。

    行は JSON 文字列として保持するので、コーデックも通る。
    disabled = True にすると全操作が StoreError になり、
    キャッシュだけで読めることをテストで確認できる。
    """

    def __init__(self) -> None:
        self.rows: dict[str, str] = {}
        self.calls: Counter[str] = Counter()
        self.disabled = False

    def _enter(self, operation: str) -> None:
        self.calls[operation] += 1
        if self.disabled:
            raise StoreError(f"Order store {operation} failed")

    async def ensure_schema(self) -> None:
        self._enter("ensure_schema")

    async def insert(self, order: Order) -> None:
        self._enter("insert")
        if order.order_uid in self.rows:
            raise OrderConflict(order.order_uid)
        self.rows[order.order_uid] = encode_order(order)

    async def replace(self, order_uid: str, order: Order) -> None:
        self._enter("replace")
        if order_uid not in self.rows:
            raise OrderNotFound(order_uid)
        self.rows[order_uid] = encode_order(order)

    async def fetch(self, order_uid: str) -> Order:
        self._enter("fetch")
        if order_uid not in self.rows:
            raise OrderNotFound(order_uid)
        try:
            return decode_row(order_uid, self.rows[order_uid])
        except CorruptRow:
            logger.error("Corrupt order row: order_uid=%s", order_uid)
            raise

    async def fetch_all(self) -> list[Order]:
        self._enter("fetch_all")
        orders = []
        for order_uid, raw in list(self.rows.items()):
            try:
                orders.append(decode_row(order_uid, raw))
            except CorruptRow:
                logger.error("Skipping corrupt order row: order_uid=%s", order_uid)
        return orders


def create_store(database_url: str, timeout: float) -> tuple[OrderStore, Any]:
    """
    DATABASE_URL からストアを作る。

    memory:// ならメモリ実装（ローカル確認用）。戻り値の 2 つ目は
    終了時に dispose するエンジン（メモリ実装なら None）。
    """
    if database_url.startswith("memory://"):
        return InMemoryOrderStore(), None

    engine = create_async_engine(database_url, echo=False)
    async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    return PostgresOrderStore(async_session, timeout=timeout), engine
