from __future__ import annotations
from typing import Optional, List, Literal
from datetime import datetime
import uuid

from pydantic import BaseModel, Field, EmailStr, model_validator

Role = Literal["student", "counselor", "admin"]
ConversationType = Literal["support", "consultation", "emergency"]
ConversationStatus = Literal["active", "ended", "archived"]
MessageType = Literal["text", "file", "image", "video"]
MessageStatus = Literal["sent", "delivered", "read"]
AppointmentType = Literal["chat", "video", "in_person"]
AppointmentStatus = Literal["scheduled", "confirmed", "in_progress", "completed", "cancelled"]


# --- Profiles ---
class ProfileCreate(BaseModel):
    """
    Insert of the caller's own profile after signup with the identity provider.
    The id comes from the verified token, never from the body.
    """
    email: EmailStr
    first_name: str = ""
    last_name: str = ""
    phone: Optional[str] = None
    role: Role = "student"


class ProfileUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1)
    last_name: Optional[str] = Field(None, min_length=1)
    phone: Optional[str] = None
    profile_image_url: Optional[str] = None


class ProfilePublic(BaseModel):
    id: uuid.UUID
    email: EmailStr
    first_name: str
    last_name: str
    phone: Optional[str] = None
    profile_image_url: Optional[str] = None
    role: Role
    is_active: bool
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# --- Conversations ---
class ConversationCreate(BaseModel):
    counselor_id: uuid.UUID
    conversation_type: ConversationType = "support"


class ConversationUpdate(BaseModel):
    status: ConversationStatus


class ConversationPublic(BaseModel):
    id: int
    student_id: uuid.UUID
    counselor_id: uuid.UUID
    conversation_type: ConversationType
    status: ConversationStatus
    started_at: datetime
    last_message_at: datetime

    class Config:
        from_attributes = True


class ConversationWithParticipants(ConversationPublic):
    student: ProfilePublic
    counselor: ProfilePublic


# --- Messages ---
class MessageCreate(BaseModel):
    content: Optional[str] = None
    message_type: MessageType = "text"
    file_url: Optional[str] = None
    file_name: Optional[str] = None

    @model_validator(mode="after")
    def check_body(self):
        if self.message_type == "text":
            if not self.content or not self.content.strip():
                raise ValueError("text messages need content")
            self.content = self.content.strip()
        elif not self.file_url:
            raise ValueError(f"{self.message_type} messages need file_url")
        return self


class MessagePublic(BaseModel):
    """The minimal row, as delivered by the realtime bridge."""
    id: int
    conversation_id: int
    sender_id: uuid.UUID
    message_type: MessageType
    content: Optional[str] = None
    file_url: Optional[str] = None
    file_name: Optional[str] = None
    status: MessageStatus
    read_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class MessageWithSender(MessagePublic):
    sender: ProfilePublic


class MarkReadResp(BaseModel):
    conversation_id: int
    updated: int


# --- Appointments ---
class AppointmentCreate(BaseModel):
    counselor_id: uuid.UUID
    appointment_type: AppointmentType = "video"
    scheduled_start: datetime
    scheduled_end: datetime
    conversation_id: Optional[int] = None
    reason_for_visit: Optional[str] = None
    notes: Optional[str] = None
    is_emergency: bool = False


class AppointmentUpdate(BaseModel):
    status: Optional[AppointmentStatus] = None
    scheduled_start: Optional[datetime] = None
    scheduled_end: Optional[datetime] = None
    notes: Optional[str] = None


class AppointmentPublic(BaseModel):
    id: int
    student_id: uuid.UUID
    counselor_id: uuid.UUID
    conversation_id: Optional[int] = None
    appointment_type: AppointmentType
    status: AppointmentStatus
    scheduled_start: datetime
    scheduled_end: datetime
    meeting_url: Optional[str] = None
    notes: Optional[str] = None
    reason_for_visit: Optional[str] = None
    is_emergency: bool = False
    # Computed at response time, never stored
    can_join: bool = False

    class Config:
        from_attributes = True


class AppointmentWithParticipants(AppointmentPublic):
    student: ProfilePublic
    counselor: ProfilePublic


class JoinInfo(BaseModel):
    appointment_id: int
    meeting_url: str


# --- Video ---
class VideoRoomCreate(BaseModel):
    appointment_id: Optional[int] = None
    room_id: Optional[str] = Field(None, min_length=1, max_length=200)
    context: Literal["room", "call"] = "room"


class VideoRoom(BaseModel):
    room_id: str
    meeting_url: str


class VideoSessionPublic(BaseModel):
    id: int
    appointment_id: Optional[int] = None
    room_id: str
    participants: List[str] = []
    call_started_at: Optional[datetime] = None
    call_ended_at: Optional[datetime] = None
    call_duration: Optional[int] = None
    recording_url: Optional[str] = None
    meeting_url: Optional[str] = None

    class Config:
        from_attributes = True


# --- Dashboard ---
class Overview(BaseModel):
    role: Role
    active_conversations: int
    upcoming_appointments: int
    next_appointment: Optional[AppointmentPublic] = None
