"""
Conversations and messages.

A message insert and the conversation's ``last_message_at`` update are one
transaction: both commit or neither does. The realtime event is published
only after that commit.
"""
from typing import List

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from portal.errors import Conflict, NotFound, ValidationFailed
from portal.models import Conversation, Message
from portal.realtime.bridge import publish_message_insert
from portal.schemas import ConversationCreate, MessageCreate
from portal.services import profile_service
from portal.services.policy import Caller, Operation, ensure, readable_clause
from portal.utils.logger import get_logger
from portal.utils.timeutil import utcnow

log = get_logger("chat")

MESSAGE_STATUS_ORDER = {"sent": 0, "delivered": 1, "read": 2}


# --- Conversations ---
async def create_conversation(db: AsyncSession, caller: Caller, data: ConversationCreate) -> Conversation:
    conversation = Conversation(
        student_id=caller.id,
        counselor_id=data.counselor_id,
        conversation_type=data.conversation_type,
        status="active",
    )
    ensure(caller, Operation.INSERT, conversation)
    await profile_service.require_counselor(db, data.counselor_id)

    now = utcnow()
    conversation.started_at = now
    conversation.last_message_at = now
    db.add(conversation)
    await db.commit()
    log.info("conversation %s created: student=%s counselor=%s", conversation.id, caller.id, data.counselor_id)
    return await get_conversation(db, caller, conversation.id)


async def get_conversation(db: AsyncSession, caller: Caller, conversation_id: int) -> Conversation:
    """Conversation with both participant profiles loaded."""
    q = (
        select(Conversation)
        .where(Conversation.id == conversation_id)
        .options(selectinload(Conversation.student), selectinload(Conversation.counselor))
        .execution_options(populate_existing=True)
    )
    conversation = (await db.execute(q)).scalar_one_or_none()
    if conversation is None:
        raise NotFound("Conversation not found")
    ensure(caller, Operation.READ, conversation)
    return conversation


async def list_conversations(db: AsyncSession, caller: Caller) -> List[Conversation]:
    q = (
        select(Conversation)
        .where(readable_clause(caller, Conversation))
        .options(selectinload(Conversation.student), selectinload(Conversation.counselor))
        .order_by(Conversation.last_message_at.desc(), Conversation.id.desc())
    )
    return list((await db.execute(q)).scalars().all())


async def set_conversation_status(
    db: AsyncSession, caller: Caller, conversation_id: int, new_status: str
) -> Conversation:
    conversation = await get_conversation(db, caller, conversation_id)
    ensure(caller, Operation.UPDATE, conversation)
    if conversation.status == new_status:
        return conversation
    if conversation.status == "archived":
        raise Conflict("Archived conversations cannot be reopened")
    conversation.status = new_status
    await db.commit()
    log.info("conversation %s -> %s by %s", conversation_id, new_status, caller.id)
    return await get_conversation(db, caller, conversation_id)


# --- Messages ---
async def send_message(
    db: AsyncSession, caller: Caller, conversation_id: int, data: MessageCreate
) -> Message:
    conversation = await get_conversation(db, caller, conversation_id)
    message = Message(
        conversation_id=conversation.id,
        sender_id=caller.id,
        message_type=data.message_type,
        content=data.content,
        file_url=data.file_url,
        file_name=data.file_name,
        status="sent",
    )
    ensure(caller, Operation.INSERT, message, parent=conversation)
    if conversation.status != "active":
        raise Conflict(f"Conversation is {conversation.status}")

    sent_at = utcnow()
    message.created_at = sent_at
    db.add(message)
    try:
        await db.flush()
        await db.execute(
            update(Conversation)
            .where(Conversation.id == conversation.id)
            .values(last_message_at=sent_at, updated_at=sent_at)
        )
        await db.commit()
    except Exception:
        await db.rollback()
        log.error("message insert rolled back for conversation %s", conversation_id)
        raise
    await db.refresh(message)

    await publish_message_insert(message)
    return message


async def get_message(db: AsyncSession, caller: Caller, message_id: int) -> Message:
    """Fetch-by-id with the sender profile, used to enrich realtime rows."""
    q = select(Message).where(Message.id == message_id).options(selectinload(Message.sender))
    message = (await db.execute(q)).scalar_one_or_none()
    if message is None:
        raise NotFound("Message not found")
    conversation = await db.get(Conversation, message.conversation_id)
    ensure(caller, Operation.READ, message, parent=conversation)
    return message


async def list_messages(db: AsyncSession, caller: Caller, conversation_id: int) -> List[Message]:
    await get_conversation(db, caller, conversation_id)
    q = (
        select(Message)
        .where(Message.conversation_id == conversation_id, readable_clause(caller, Message))
        .options(selectinload(Message.sender))
        .order_by(Message.created_at.asc(), Message.id.asc())
    )
    return list((await db.execute(q)).scalars().all())


async def advance_status(
    db: AsyncSession, caller: Caller, conversation_id: int, new_status: str = "read"
) -> int:
    """
    Move the counterpart's messages forward to ``new_status``.
    Statuses only move sent -> delivered -> read; nothing moves backwards.
    """
    if new_status not in ("delivered", "read"):
        raise ValidationFailed("status must be delivered or read")
    conversation = await get_conversation(db, caller, conversation_id)

    earlier = [s for s, rank in MESSAGE_STATUS_ORDER.items() if rank < MESSAGE_STATUS_ORDER[new_status]]
    q = select(Message).where(
        Message.conversation_id == conversation.id,
        Message.sender_id != caller.id,
        Message.status.in_(earlier),
    )
    pending = list((await db.execute(q)).scalars().all())

    now = utcnow()
    for message in pending:
        ensure(caller, Operation.UPDATE, message, parent=conversation)
        message.status = new_status
        if new_status == "read":
            message.read_at = now
    await db.commit()
    return len(pending)


async def count_active_conversations(db: AsyncSession, caller: Caller) -> int:
    q = select(func.count(Conversation.id)).where(
        readable_clause(caller, Conversation), Conversation.status == "active"
    )
    return (await db.execute(q)).scalar() or 0
