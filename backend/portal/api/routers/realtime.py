import asyncio

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from sqlalchemy.ext.asyncio import AsyncSession

from portal.db import get_db
from portal.errors import PortalError
from portal.realtime.bridge import subscribe_conversation
from portal.services import chat_service
from portal.services.auth_service import resolve_caller
from portal.utils.logger import get_logger

log = get_logger("realtime.ws")

router = APIRouter(prefix="/realtime", tags=["realtime"])


@router.websocket("/messages")
async def message_feed(
    websocket: WebSocket,
    conversation_id: int = Query(...),
    token: str = Query(...),  # browsers cannot set headers on a WebSocket
    db: AsyncSession = Depends(get_db),
):
    """
    INSERT feed for one conversation.

    Server sends:
        {"event": "SUBSCRIBED", "conversation_id": 1}
        {"table": "chat_messages", "event": "INSERT", "new": {...minimal row...}}

    Rows carry no sender profile; clients fetch GET /messages/{id} to enrich.
    """
    # 1. Identity and read permission on the conversation
    caller = await resolve_caller(db, token)
    if caller is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    try:
        await chat_service.get_conversation(db, caller, conversation_id)
    except PortalError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    # The feed never touches the database again; hand the connection back
    await db.close()

    await websocket.accept()

    # 2. Forward events until the client goes away
    async with subscribe_conversation(conversation_id) as sub:
        await websocket.send_json({"event": "SUBSCRIBED", "conversation_id": conversation_id})
        log.info("caller %s subscribed to conversation %s", caller.id, conversation_id)

        async def forward():
            async for event in sub:
                await websocket.send_json(event.as_payload())

        async def watch():
            # Inbound frames are ignored; this only notices the disconnect
            while True:
                await websocket.receive_text()

        tasks = [asyncio.create_task(forward()), asyncio.create_task(watch())]
        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                exc = task.exception()
                if exc is not None and not isinstance(exc, WebSocketDisconnect):
                    log.error("realtime feed for conversation %s failed: %s", conversation_id, exc)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    log.info("caller %s left conversation %s", caller.id, conversation_id)
