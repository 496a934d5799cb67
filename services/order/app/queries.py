"""
Order Service — クエリハンドラ (Read 側)

単一取得はリードスルー:
    キャッシュ (共有ロック) → ミスならストア → キャッシュへ補充

一覧は常にストアから読み (正)、返ってきた全行でキャッシュを埋め直す。
"""

from .cache import OrderCache
from .models import Order
from .store import OrderStore


async def get_order(store: OrderStore, cache: OrderCache, order_uid: str) -> Order:
    """キャッシュから注文を取得し、なければストアから読んで補充する。"""
    cached = await cache.get(order_uid)
    if cached is not None:
        return cached

    # OrderNotFound のときはキャッシュに触れずに伝播する
    order = await store.fetch(order_uid)
    await cache.fill(order_uid, order)
    return order


async def list_orders(store: OrderStore, cache: OrderCache) -> list[Order]:
    """全注文をストアから取得する。"""
    async with cache.exclusive() as entries:
        orders = await store.fetch_all()
        entries.put_many(orders)
    return orders
