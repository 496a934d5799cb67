"""
Order Service — コマンドハンドラ (Write 側)

書き込みは必ずキャッシュの排他ロックの中で行う:

    1. ストアに書く (正)
    2. 成功したときだけキャッシュを更新する

ストア書き込みが失敗した場合、キャッシュには一切触れない。
同じ order_uid に対する作成と部分更新はこのロックで直列化される。
"""

import logging

from .cache import OrderCache
from .models import Order, PartialOrder, merge_order, validate_order
from .store import OrderStore

logger = logging.getLogger(__name__)


async def create_order(store: OrderStore, cache: OrderCache, order: Order) -> Order:
    """
    注文作成コマンド

    検証済みの Order を受け取り、ストアに挿入してからキャッシュに入れる。
    既存キーなら OrderConflict がそのまま伝播する。
    """
    async with cache.exclusive() as entries:
        await store.insert(order)
        entries.put(order.order_uid, order)
    logger.info("Created order %s", order.order_uid)
    return order


async def update_order(
    store: OrderStore,
    cache: OrderCache,
    order_uid: str,
    patch: PartialOrder,
) -> Order:
    """
    部分更新コマンド

    1. 現在の Order を取得 (キャッシュ優先、なければストア)
    2. PartialOrder を重ねる
    3. マージ結果を作成ルールで再検証
    4. ストアの行を丸ごと置き換え
    5. キャッシュを更新

    order_uid は URL パスと既存ドキュメントから取り、変更しない。
    """
    async with cache.exclusive() as entries:
        current = entries.get(order_uid)
        if current is None:
            current = await store.fetch(order_uid)

        merged = validate_order(merge_order(current, patch).model_dump())

        await store.replace(order_uid, merged)
        entries.put(order_uid, merged)

    fields = ", ".join(sorted(patch.model_fields_set)) or "-"
    logger.info("Updated order %s (fields: %s)", order_uid, fields)
    return merged
