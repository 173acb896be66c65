"""
Async REST client for the portal API.

Transient failures (connection errors, timeouts, 502/503/504) are retried with
bounded exponential backoff. Policy denials, validation failures and missing
rows are raised immediately as the matching ``portal.errors`` class.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import httpx
from httpx_ws import WebSocketDisconnect, WebSocketUpgradeError, aconnect_ws
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from portal.errors import ERRORS_BY_STATUS, PolicyDenied, PortalError, TransientFailure

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {502, 503, 504}


def _raise_for_status(resp: httpx.Response) -> None:
    if resp.is_success:
        return
    try:
        detail = resp.json().get("detail")
    except ValueError:
        detail = resp.text
    if resp.status_code in RETRYABLE_STATUS:
        raise TransientFailure(str(detail))
    error_cls = ERRORS_BY_STATUS.get(resp.status_code, PortalError)
    raise error_cls(str(detail))


class PortalApiClient:
    """
    Thin wrapper over ``httpx.AsyncClient`` holding the caller's bearer token.

    Pass ``transport`` (e.g. ``httpx.ASGITransport(app=app)``) to talk to an
    in-process app.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ):
        self._token = token
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={"Authorization": f"Bearer {token}"},
            transport=transport,
            timeout=timeout,
        )

    async def __aenter__(self) -> "PortalApiClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    @retry(
        retry=retry_if_exception_type((TransientFailure, httpx.TransportError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential_jitter(initial=0.2, max=2.0),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _request(self, method: str, url: str, **kwargs) -> Any:
        resp = await self._client.request(method, url, **kwargs)
        _raise_for_status(resp)
        if resp.status_code == 204:
            return None
        return resp.json()

    # --- Profiles ---
    async def me(self) -> dict:
        return await self._request("GET", "/profiles/me")

    async def counselors(self) -> list[dict]:
        return await self._request("GET", "/profiles/counselors")

    # --- Conversations ---
    async def list_conversations(self) -> list[dict]:
        return await self._request("GET", "/conversations")

    async def create_conversation(self, counselor_id, conversation_type: str = "support") -> dict:
        body = {"counselor_id": str(counselor_id), "conversation_type": conversation_type}
        return await self._request("POST", "/conversations", json=body)

    async def list_messages(self, conversation_id: int) -> list[dict]:
        return await self._request("GET", f"/conversations/{conversation_id}/messages")

    async def get_message(self, message_id: int) -> dict:
        return await self._request("GET", f"/messages/{message_id}")

    async def send_message(self, conversation_id: int, content: str) -> dict:
        # Not retried on its own: a retried POST after a lost response would send twice
        resp = await self._client.post(
            f"/conversations/{conversation_id}/messages",
            json={"content": content, "message_type": "text"},
        )
        _raise_for_status(resp)
        return resp.json()

    async def mark_read(self, conversation_id: int) -> dict:
        return await self._request("POST", f"/conversations/{conversation_id}/read")

    # --- Appointments ---
    async def list_appointments(self) -> list[dict]:
        return await self._request("GET", "/appointments")

    async def create_appointment(self, **fields) -> dict:
        resp = await self._client.post("/appointments", json=fields)
        _raise_for_status(resp)
        return resp.json()

    async def update_appointment(self, appointment_id: int, **fields) -> dict:
        return await self._request("PATCH", f"/appointments/{appointment_id}", json=fields)

    # --- Video ---
    async def create_room(self, appointment_id: Optional[int] = None, room_id: Optional[str] = None) -> dict:
        body = {"appointment_id": appointment_id, "room_id": room_id}
        resp = await self._client.post("/video/rooms", json=body)
        _raise_for_status(resp)
        return resp.json()

    # --- Realtime ---
    @asynccontextmanager
    async def subscribe_messages(self, conversation_id: int):
        """
        INSERT feed for one conversation over ``WS /realtime/messages``.

        Enters only after the server acknowledged the subscription, so every
        message committed from then on is delivered. Yields an async iterator
        of ``{"table", "event", "new"}`` payloads.
        """
        url = f"/realtime/messages?conversation_id={conversation_id}&token={self._token}"
        # The server refuses the handshake, or closes before the ack, when the
        # caller may not read the conversation
        try:
            async with aconnect_ws(url, self._client) as ws:
                try:
                    ack = await ws.receive_json()
                except WebSocketDisconnect as e:
                    raise PolicyDenied() from e
                if ack.get("event") != "SUBSCRIBED":
                    raise PortalError(f"Unexpected first frame on realtime feed: {ack}")
                logger.debug("subscribed to conversation %s", conversation_id)
                yield _insert_payloads(ws)
        except WebSocketUpgradeError as e:
            raise PolicyDenied() from e


async def _insert_payloads(ws) -> AsyncIterator[dict]:
    while True:
        try:
            payload = await ws.receive_json()
        except WebSocketDisconnect:
            return
        if payload.get("event") == "INSERT":
            yield payload
