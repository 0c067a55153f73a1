"""Publisher tests — exchange declaration, encoding, error wrapping."""

import json
from unittest.mock import AsyncMock

import aio_pika
import pytest
from aio_pika.exceptions import AMQPException

from adsync.realtime import pubsub
from adsync.realtime.errors import PublishError


class RecordingChannel:
    def __init__(self, fail: bool = False):
        self.exchange = AsyncMock()
        if fail:
            self.exchange.publish.side_effect = AMQPException("channel closed")
        self.declared = []

    async def declare_exchange(self, name, type, durable=False):
        self.declared.append((name, type, durable))
        return self.exchange


def test_routing_keys():
    assert pubsub.progress_key("u9") == "progress.u9"
    assert pubsub.result_key("u9") == "result.u9"
    assert pubsub.crawl_task_key("u9") == "task.crawl.u9"


@pytest.mark.asyncio
async def test_publish_dict_as_persistent_json():
    channel = RecordingChannel()
    await pubsub.publish_event("progress.u9", {"request_id": "j1", "progress": 5}, channel=channel)

    assert channel.declared == [("avito_exchange", aio_pika.ExchangeType.TOPIC, True)]
    message = channel.exchange.publish.await_args.args[0]
    assert json.loads(message.body) == {"request_id": "j1", "progress": 5}
    assert message.delivery_mode == aio_pika.DeliveryMode.PERSISTENT
    assert channel.exchange.publish.await_args.kwargs["routing_key"] == "progress.u9"


@pytest.mark.asyncio
async def test_publish_raw_string_untouched():
    channel = RecordingChannel()
    await pubsub.publish_event("result.u1", "not json", channel=channel)
    assert channel.exchange.publish.await_args.args[0].body == b"not json"


@pytest.mark.asyncio
async def test_publish_failure_wrapped():
    with pytest.raises(PublishError, match="task.crawl.u1"):
        await pubsub.publish_event("task.crawl.u1", {}, channel=RecordingChannel(fail=True))


def test_get_channel_requires_init():
    with pytest.raises(RuntimeError, match="not initialized"):
        pubsub.get_channel()
