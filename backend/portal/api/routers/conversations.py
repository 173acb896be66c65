from typing import List, Literal

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from portal.db import get_db
from portal.schemas import (
    ConversationCreate, ConversationUpdate, ConversationWithParticipants,
    MarkReadResp, MessageCreate, MessagePublic, MessageWithSender,
)
from portal.services import chat_service
from portal.services.auth_service import get_caller
from portal.services.policy import Caller

router = APIRouter(prefix="/conversations", tags=["conversations"])
messages_router = APIRouter(prefix="/messages", tags=["conversations"])


# 1. Conversation list, most recent activity first
@router.get("", response_model=List[ConversationWithParticipants])
async def list_conversations(
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return await chat_service.list_conversations(db, caller)


@router.post("", response_model=ConversationWithParticipants, status_code=status.HTTP_201_CREATED)
async def create_conversation(
    req: ConversationCreate,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return await chat_service.create_conversation(db, caller, req)


@router.get("/{conversation_id}", response_model=ConversationWithParticipants)
async def get_conversation(
    conversation_id: int,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return await chat_service.get_conversation(db, caller, conversation_id)


@router.patch("/{conversation_id}", response_model=ConversationWithParticipants)
async def update_conversation(
    conversation_id: int,
    req: ConversationUpdate,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return await chat_service.set_conversation_status(db, caller, conversation_id, req.status)


# 2. Message history, oldest first (loaded once per subscription)
@router.get("/{conversation_id}/messages", response_model=List[MessageWithSender])
async def list_messages(
    conversation_id: int,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return await chat_service.list_messages(db, caller, conversation_id)


@router.post(
    "/{conversation_id}/messages",
    response_model=MessagePublic,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    conversation_id: int,
    req: MessageCreate,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return await chat_service.send_message(db, caller, conversation_id, req)


@router.post("/{conversation_id}/read", response_model=MarkReadResp)
async def mark_read(
    conversation_id: int,
    status_: Literal["delivered", "read"] = Query("read", alias="status"),
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    """Advance the other participant's messages to delivered or read."""
    updated = await chat_service.advance_status(db, caller, conversation_id, status_)
    return MarkReadResp(conversation_id=conversation_id, updated=updated)


# 3. Fetch-by-id, used to enrich realtime rows with the sender
@messages_router.get("/{message_id}", response_model=MessageWithSender)
async def get_message(
    message_id: int,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return await chat_service.get_message(db, caller, message_id)
