# backend/portal/realtime/kafka.py
"""
Cross-instance realtime fan-out.

With KAFKA_BOOTSTRAP set, row events are produced to a topic and every API
instance consumes the whole topic (its own consumer group) into its local hub.
"""
import asyncio
import json
import uuid

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer

from portal import config
from portal.realtime.hub import RowEvent, hub
from portal.utils.logger import get_logger

log = get_logger("realtime.kafka")

producer: AIOKafkaProducer | None = None
consumer: AIOKafkaConsumer | None = None
_consume_task: asyncio.Task | None = None


def enabled() -> bool:
    return bool(config.KAFKA_BOOTSTRAP)


async def start_kafka():
    global producer, consumer, _consume_task
    if not enabled():
        log.info("KAFKA_BOOTSTRAP not set, realtime bridge stays in-process")
        return

    producer = AIOKafkaProducer(
        bootstrap_servers=config.KAFKA_BOOTSTRAP,
        value_serializer=lambda v: json.dumps(v).encode(),
        key_serializer=lambda v: str(v).encode(),
        linger_ms=5,
        acks="all",
        enable_idempotence=True,
    )
    await producer.start()

    consumer = AIOKafkaConsumer(
        config.KAFKA_TOPIC_REALTIME,
        bootstrap_servers=config.KAFKA_BOOTSTRAP,
        group_id=f"portal-realtime-{uuid.uuid4().hex[:12]}",
        value_deserializer=lambda v: json.loads(v.decode()),
        auto_offset_reset="latest",
    )
    await consumer.start()
    _consume_task = asyncio.create_task(_consume())
    log.info("realtime bridge connected to kafka at %s", config.KAFKA_BOOTSTRAP)


async def stop_kafka():
    global producer, consumer, _consume_task
    if _consume_task:
        _consume_task.cancel()
        try:
            await _consume_task
        except asyncio.CancelledError:
            pass
        _consume_task = None
    if consumer:
        await consumer.stop()
        consumer = None
    if producer:
        await producer.stop()
        producer = None


async def _consume():
    async for msg in consumer:
        try:
            hub.publish(RowEvent.from_payload(msg.value))
        except (KeyError, TypeError) as e:
            log.error("dropping malformed realtime payload at offset %s: %s", msg.offset, e)


async def send_event(event: RowEvent, key) -> None:
    await producer.send_and_wait(config.KAFKA_TOPIC_REALTIME, event.as_payload(), key=key)
