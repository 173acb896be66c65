from __future__ import annotations
from typing import Optional, Literal
from datetime import datetime
import uuid

from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import (
    BigInteger, Integer, String, Text, DateTime, Boolean, JSON, Uuid,
    CheckConstraint, ForeignKey, Index,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.sql import func
from sqlalchemy.sql.functions import FunctionElement

from portal.db import Base
from portal.utils.timeutil import utcnow

# SQLite only autoincrements INTEGER primary keys
BigIntPK = BigInteger().with_variant(Integer, "sqlite")
JSONList = JSON().with_variant(JSONB, "postgresql")


class json_list_contains(FunctionElement):
    """``json_list_contains(column, value)``: ``value`` is an element of the JSON array in ``column``."""
    type = Boolean()
    name = "json_list_contains"
    inherit_cache = True


@compiles(json_list_contains, "postgresql")
def _json_list_contains_pg(element, compiler, **kw):
    column, value = list(element.clauses)
    return "(%s @> jsonb_build_array(CAST(%s AS TEXT)))" % (
        compiler.process(column, **kw), compiler.process(value, **kw)
    )


@compiles(json_list_contains)
def _json_list_contains_default(element, compiler, **kw):
    # SQLite JSON1
    column, value = list(element.clauses)
    return "EXISTS (SELECT 1 FROM json_each(%s) WHERE json_each.value = %s)" % (
        compiler.process(column, **kw), compiler.process(value, **kw)
    )


Role = Literal["student", "counselor", "admin"]
ConversationType = Literal["support", "consultation", "emergency"]
ConversationStatus = Literal["active", "ended", "archived"]
MessageType = Literal["text", "file", "image", "video"]
MessageStatus = Literal["sent", "delivered", "read"]
AppointmentType = Literal["chat", "video", "in_person"]
AppointmentStatus = Literal["scheduled", "confirmed", "in_progress", "completed", "cancelled"]


class Profile(Base):
    """
    One row per user. The id is the identity provider's subject and never changes.
    """
    __tablename__ = "profiles"
    __table_args__ = (
        CheckConstraint("role in ('student','counselor','admin')", name="ck_profiles_role"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    email: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
    first_name: Mapped[str] = mapped_column(String, default="", nullable=False)
    last_name: Mapped[str] = mapped_column(String, default="", nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    profile_image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    role: Mapped[str] = mapped_column(String, default="student", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )


class Conversation(Base):
    """
    A chat between one student and one counselor. Never deleted; archived via status.
    """
    __tablename__ = "chat_conversations"
    __table_args__ = (
        CheckConstraint(
            "conversation_type in ('support','consultation','emergency')",
            name="ck_conversations_type",
        ),
        CheckConstraint("status in ('active','ended','archived')", name="ck_conversations_status"),
        Index("idx_conversations_student", "student_id"),
        Index("idx_conversations_counselor", "counselor_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    student_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    counselor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    conversation_type: Mapped[str] = mapped_column(String, default="support", nullable=False)
    status: Mapped[str] = mapped_column(String, default="active", nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    # Denormalized; written in the same transaction as every message insert
    last_message_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    student: Mapped["Profile"] = relationship(foreign_keys=[student_id])
    counselor: Mapped["Profile"] = relationship(foreign_keys=[counselor_id])


class Message(Base):
    __tablename__ = "chat_messages"
    __table_args__ = (
        CheckConstraint(
            "message_type in ('text','file','image','video')", name="ck_messages_type"
        ),
        CheckConstraint("status in ('sent','delivered','read')", name="ck_messages_status"),
        Index("idx_messages_conversation_time", "conversation_id", "created_at"),
    )

    # Monotonic id; the client timeline dedups on it
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    conversation_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("chat_conversations.id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    message_type: Mapped[str] = mapped_column(String, default="text", nullable=False)
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    file_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    file_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, default="sent", nullable=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    conversation: Mapped["Conversation"] = relationship()
    sender: Mapped["Profile"] = relationship()


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        CheckConstraint(
            "appointment_type in ('chat','video','in_person')", name="ck_appointments_type"
        ),
        CheckConstraint(
            "status in ('scheduled','confirmed','in_progress','completed','cancelled')",
            name="ck_appointments_status",
        ),
        CheckConstraint("scheduled_start < scheduled_end", name="ck_appointments_window"),
        Index("idx_appointments_student", "student_id"),
        Index("idx_appointments_counselor", "counselor_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    student_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    counselor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    conversation_id: Mapped[Optional[int]] = mapped_column(
        BigIntPK, ForeignKey("chat_conversations.id"), nullable=True
    )
    appointment_type: Mapped[str] = mapped_column(String, default="video", nullable=False)
    status: Mapped[str] = mapped_column(String, default="scheduled", nullable=False)
    scheduled_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    scheduled_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    meeting_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reason_for_visit: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_emergency: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    student: Mapped["Profile"] = relationship(foreign_keys=[student_id])
    counselor: Mapped["Profile"] = relationship(foreign_keys=[counselor_id])


class VideoSession(Base):
    """
    Metadata for a room hosted by the external conferencing service.
    """
    __tablename__ = "video_call_sessions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    appointment_id: Mapped[Optional[int]] = mapped_column(
        BigIntPK, ForeignKey("appointments.id", ondelete="CASCADE"), nullable=True
    )
    room_id: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    participants: Mapped[list[str]] = mapped_column(JSONList, default=list, nullable=False)
    call_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    call_ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    call_duration: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # seconds
    recording_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    appointment: Mapped[Optional["Appointment"]] = relationship()
