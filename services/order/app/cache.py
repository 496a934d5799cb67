"""
Order Service — リードスルーキャッシュ

order_uid → Order のプロセスローカルな写像。
共有・排他ロック (多数のリーダー / 単一のライター) で保護する。

キャッシュは正ではない: プロセスが落ちれば消えるが、耐久性は失われない。
エントリの有効期限・追い出しはない。
"""

import asyncio
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager

from .models import Order


class ReadWriteLock:
    """
    asyncio 用の共有・排他ロック。

    ライター優先: ライターが待っている間、新しいリーダーは入れない。
    """

    def __init__(self) -> None:
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    async def acquire_read(self) -> None:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer and not self._waiting_writers)
            self._readers += 1

    async def release_read(self) -> None:
        async with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    async def acquire_write(self) -> None:
        async with self._cond:
            self._waiting_writers += 1
            try:
                await self._cond.wait_for(lambda: not self._writer and self._readers == 0)
            finally:
                self._waiting_writers -= 1
                # キャンセル時に待機中のリーダーを起こす
                self._cond.notify_all()
            self._writer = True

    async def release_write(self) -> None:
        async with self._cond:
            self._writer = False
            self._cond.notify_all()

    @asynccontextmanager
    async def reading(self) -> AsyncIterator[None]:
        await self.acquire_read()
        try:
            yield
        finally:
            await self.release_read()

    @asynccontextmanager
    async def writing(self) -> AsyncIterator[None]:
        await self.acquire_write()
        try:
            yield
        finally:
            await self.release_write()


class CacheEntries:
    """
    ロック済みの呼び出し側が使うエントリ操作。

    OrderCache.exclusive() の中でだけ使うこと。自身はロックを取らない。
    """

    def __init__(self, entries: dict[str, Order]) -> None:
        self._entries = entries

    def get(self, key: str) -> Order | None:
        return self._entries.get(key)

    def put(self, key: str, order: Order) -> None:
        # キーと異なる order_uid のドキュメントは保持しない
        if order.order_uid != key:
            raise ValueError(f"cache key {key!r} does not match order_uid {order.order_uid!r}")
        self._entries[key] = order

    def put_many(self, orders: Iterable[Order]) -> None:
        for order in orders:
            self.put(order.order_uid, order)

    def fill(self, key: str, order: Order) -> None:
        """キーが空いているときだけ入れる。より新しい書き込みを上書きしない。"""
        if key not in self._entries:
            self.put(key, order)


class OrderCache:
    """order_uid をキーにした非正キャッシュ"""

    def __init__(self) -> None:
        self._entries: dict[str, Order] = {}
        self._lock = ReadWriteLock()
        self._view = CacheEntries(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> Order | None:
        async with self._lock.reading():
            return self._view.get(key)

    async def put(self, key: str, order: Order) -> None:
        async with self._lock.writing():
            self._view.put(key, order)

    async def put_many(self, orders: Iterable[Order]) -> None:
        async with self._lock.writing():
            self._view.put_many(orders)

    async def fill(self, key: str, order: Order) -> None:
        async with self._lock.writing():
            self._view.fill(key, order)

    @asynccontextmanager
    async def exclusive(self) -> AsyncIterator[CacheEntries]:
        """
        排他ロックを保持したままエントリを操作する。

        作成・部分更新のように「ストア書き込み → キャッシュ更新」を
        同じロック区間で行う必要がある処理で使う。
        """
        async with self._lock.writing():
            yield self._view
