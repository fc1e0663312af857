"""
Storefront — イベント発行

コミット後にドメインイベントを Redis Pub/Sub へ流す。
購読者がいなくても失敗しない (fire-and-forget)。
"""

import json
import logging

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

ORDER_EVENTS = "order_events"
INVENTORY_EVENTS = "inventory_events"
CART_EVENTS = "cart_events"
PAYMENT_EVENTS = "payment_events"


async def publish_event(
    redis: aioredis.Redis,
    channel: str,
    event_type: str,
    data: dict,
) -> None:
    """{"event_type": ..., "data": {...}} 形式でチャネルに発行する。"""
    await redis.publish(channel, json.dumps({
        "event_type": event_type,
        "data": data,
    }, default=str))
    logger.debug("Published %s on %s", event_type, channel)
