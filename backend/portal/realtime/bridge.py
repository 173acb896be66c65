"""
Publishing side of the realtime bridge. Only message inserts are published.
"""
from aiokafka.errors import KafkaError

from portal.models import Message
from portal.realtime import kafka
from portal.realtime.hub import INSERT, RowEvent, hub
from portal.schemas import MessagePublic
from portal.utils.logger import get_logger

log = get_logger("realtime.bridge")

MESSAGES_TABLE = Message.__tablename__


def message_insert_event(message: Message) -> RowEvent:
    # Minimal row: the sender profile is not joined in
    record = MessagePublic.model_validate(message).model_dump(mode="json")
    return RowEvent(table=MESSAGES_TABLE, event_type=INSERT, record=record)


async def publish_message_insert(message: Message) -> None:
    """Called after the insert has committed."""
    event = message_insert_event(message)
    if kafka.producer is not None:
        try:
            await kafka.send_event(event, key=message.conversation_id)
        except KafkaError as e:
            # The row is committed; live subscribers will pick it up on their next history load
            log.error("failed to publish message %s to kafka: %s", message.id, e)
        return
    delivered = hub.publish(event)
    log.debug("message %s published to %d subscriber(s)", message.id, delivered)


def subscribe_conversation(conversation_id: int):
    return hub.subscribe(MESSAGES_TABLE, {"conversation_id": conversation_id}, INSERT)
