"""
Row-level access control.

Every read and write in the service layer goes through ``permitted_operations``
(one row at a time) or ``readable_clause`` (list queries). The predicates are
the same ones the Postgres migration installs as RLS policies, so the app and
the database agree on who may see what.
"""
from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import String, and_, exists, literal, or_, select, false, true
from sqlalchemy.sql.elements import ColumnElement

from portal.errors import PolicyDenied
from portal.models import Appointment, Conversation, Message, Profile, VideoSession, json_list_contains
from portal.utils.logger import get_logger

log = get_logger("policy")


class Operation(str, enum.Enum):
    READ = "read"
    INSERT = "insert"
    UPDATE = "update"


NONE = frozenset()
READ_ONLY = frozenset({Operation.READ})
READ_UPDATE = frozenset({Operation.READ, Operation.UPDATE})
ALL = frozenset({Operation.READ, Operation.INSERT, Operation.UPDATE})


@dataclass(frozen=True)
class Caller:
    """The acting identity, passed explicitly into every service call."""

    id: uuid.UUID
    role: str

    @property
    def is_student(self) -> bool:
        return self.role == "student"

    @property
    def is_counselor(self) -> bool:
        return self.role == "counselor"


def _is_party(caller: Caller, row) -> bool:
    return caller.id in (row.student_id, row.counselor_id)


def permitted_operations(
    caller: Caller,
    resource,
    parent: Optional[Conversation | Appointment] = None,
) -> frozenset[Operation]:
    """
    Operations ``caller`` may perform on ``resource``.

    ``resource`` may be an unsaved row (for inserts). Messages need their
    conversation as ``parent``; video sessions need their appointment when
    they are linked to one.
    """
    if isinstance(resource, Profile):
        return ALL if resource.id == caller.id else READ_ONLY

    if isinstance(resource, (Conversation, Appointment)):
        if not _is_party(caller, resource):
            return NONE
        # Only a student books or opens a thread, and only as themselves
        if resource.student_id == caller.id and caller.is_student:
            return ALL
        return READ_UPDATE

    if isinstance(resource, Message):
        if parent is None or parent.id != resource.conversation_id or not _is_party(caller, parent):
            return NONE
        ops = {Operation.READ}
        if resource.sender_id == caller.id:
            ops.add(Operation.INSERT)
        else:
            # Only the recipient moves a message to delivered/read
            ops.add(Operation.UPDATE)
        return frozenset(ops)

    if isinstance(resource, VideoSession):
        if resource.appointment_id is not None:
            if parent is None or parent.id != resource.appointment_id:
                return NONE
            return ALL if _is_party(caller, parent) else NONE
        return ALL if str(caller.id) in (resource.participants or []) else NONE

    return NONE


def ensure(
    caller: Caller,
    operation: Operation,
    resource,
    parent: Optional[Conversation | Appointment] = None,
) -> None:
    if operation not in permitted_operations(caller, resource, parent):
        log.warning(
            "policy denied: caller=%s op=%s resource=%s id=%s",
            caller.id, operation.value, type(resource).__name__, getattr(resource, "id", None),
        )
        raise PolicyDenied()


def readable_clause(caller: Caller, model) -> ColumnElement[bool]:
    """SQL form of the read predicate, for list queries."""
    if model is Profile:
        return true()
    if model in (Conversation, Appointment):
        return or_(model.student_id == caller.id, model.counselor_id == caller.id)
    if model is Message:
        return exists(
            select(Conversation.id).where(
                Conversation.id == Message.conversation_id,
                or_(Conversation.student_id == caller.id, Conversation.counselor_id == caller.id),
            )
        )
    if model is VideoSession:
        linked = exists(
            select(Appointment.id).where(
                and_(
                    Appointment.id == VideoSession.appointment_id,
                    or_(Appointment.student_id == caller.id, Appointment.counselor_id == caller.id),
                )
            )
        )
        ad_hoc = and_(
            VideoSession.appointment_id.is_(None),
            json_list_contains(VideoSession.participants, literal(str(caller.id), String)),
        )
        return or_(linked, ad_hoc)
    return false()
