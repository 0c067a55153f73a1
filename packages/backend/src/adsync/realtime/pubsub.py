"""RabbitMQ topic exchange — shared declaration and event publishing.

Learn: Everything flows through one durable topic exchange (avito_exchange).
Routing keys say what kind of event it is and whose it is:

    task.crawl.{user_id}   API → crawler workers (start a crawl)
    progress.{user_id}     crawler workers → progress relay
    result.{user_id}       AI workers → results relay

Publishing is fire-and-forget at the topic level: if no queue is bound for a
key the broker drops the message. That's fine for UI progress — the frontend
can always query the API to catch up.
"""

import json
from typing import Any, Optional, Union

import aio_pika
import structlog
from aio_pika.abc import AbstractChannel, AbstractExchange, AbstractRobustConnection
from aio_pika.exceptions import AMQPException

from adsync.config import settings
from adsync.realtime.errors import PublishError

logger = structlog.get_logger()

# Global publisher connection (opened by init_publisher, e.g. from the CLI)
_connection: Optional[AbstractRobustConnection] = None
_channel: Optional[AbstractChannel] = None


def progress_key(user_id: str) -> str:
    return f"progress.{user_id}"


def result_key(user_id: str) -> str:
    return f"result.{user_id}"


def crawl_task_key(user_id: str) -> str:
    return f"task.crawl.{user_id}"


async def declare_exchange(
    channel: AbstractChannel, name: Optional[str] = None
) -> AbstractExchange:
    """Declare the durable topic exchange. Safe to call repeatedly."""
    return await channel.declare_exchange(
        name or settings.exchange_name,
        aio_pika.ExchangeType.TOPIC,
        durable=True,
    )


async def init_publisher(url: Optional[str] = None) -> AbstractChannel:
    """Open the publisher connection and channel."""
    global _connection, _channel
    _connection = await aio_pika.connect_robust(url or settings.rabbitmq_url)
    _channel = await _connection.channel()
    await declare_exchange(_channel)
    return _channel


async def close_publisher() -> None:
    """Close the publisher connection."""
    global _connection, _channel
    if _connection:
        await _connection.close()
    _connection = None
    _channel = None


def get_channel() -> AbstractChannel:
    """Get the publisher channel (must be initialized first)."""
    if _channel is None:
        raise RuntimeError("Publisher not initialized. Call init_publisher() first.")
    return _channel


async def publish_event(
    routing_key: str,
    payload: Union[dict[str, Any], str, bytes],
    *,
    channel: Optional[AbstractChannel] = None,
    exchange: Optional[str] = None,
) -> None:
    """Publish one event to the topic exchange.

    Dicts are JSON-encoded; str/bytes go out as-is (the relays forward
    whatever they receive, so this is also how malformed payloads get
    reproduced when debugging a client).
    """
    if isinstance(payload, dict):
        body = json.dumps(payload, default=str).encode()
    elif isinstance(payload, str):
        body = payload.encode()
    else:
        body = payload

    ch = channel or get_channel()
    try:
        ex = await declare_exchange(ch, exchange)
        await ex.publish(
            aio_pika.Message(
                body=body,
                content_type="application/json",
                delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
            ),
            routing_key=routing_key,
        )
    except (AMQPException, ConnectionError) as e:
        raise PublishError(f"Failed to publish to {routing_key}: {e}") from e

    logger.info("adsync.event_published", routing_key=routing_key, size=len(body))
