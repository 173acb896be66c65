"""Initial schema with row-level security

Revision ID: 3a91c2d4e5f6
Revises:
Create Date: 2026-10-19 10:12:03.184220
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3a91c2d4e5f6'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

BigIntPK = sa.BigInteger().with_variant(sa.Integer(), "sqlite")
JSONList = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

CALLER = "nullif(current_setting('portal.caller_id', true), '')::uuid"
IS_STUDENT = f"exists (select 1 from profiles p where p.id = {CALLER} and p.role = 'student')"

# (table, policy name, command, USING, WITH CHECK)
POLICIES = [
    ("profiles", "profiles_select", "SELECT", "true", None),
    ("profiles", "profiles_insert", "INSERT", None, f"id = {CALLER}"),
    ("profiles", "profiles_update", "UPDATE", f"id = {CALLER}", f"id = {CALLER}"),

    ("chat_conversations", "conversations_select", "SELECT",
     f"{CALLER} in (student_id, counselor_id)", None),
    ("chat_conversations", "conversations_insert", "INSERT", None, f"student_id = {CALLER} and {IS_STUDENT}"),
    ("chat_conversations", "conversations_update", "UPDATE",
     f"{CALLER} in (student_id, counselor_id)", f"{CALLER} in (student_id, counselor_id)"),

    ("chat_messages", "messages_select", "SELECT",
     "exists (select 1 from chat_conversations c where c.id = conversation_id"
     f" and {CALLER} in (c.student_id, c.counselor_id))", None),
    ("chat_messages", "messages_insert", "INSERT", None,
     f"sender_id = {CALLER} and exists (select 1 from chat_conversations c"
     f" where c.id = conversation_id and {CALLER} in (c.student_id, c.counselor_id))"),
    ("chat_messages", "messages_update", "UPDATE",
     f"sender_id <> {CALLER} and exists (select 1 from chat_conversations c"
     f" where c.id = conversation_id and {CALLER} in (c.student_id, c.counselor_id))", None),

    ("appointments", "appointments_select", "SELECT",
     f"{CALLER} in (student_id, counselor_id)", None),
    ("appointments", "appointments_insert", "INSERT", None, f"student_id = {CALLER} and {IS_STUDENT}"),
    ("appointments", "appointments_update", "UPDATE",
     f"{CALLER} in (student_id, counselor_id)", f"{CALLER} in (student_id, counselor_id)"),
]

VIDEO_PARTY = (
    "(appointment_id is not null and exists (select 1 from appointments a"
    f" where a.id = appointment_id and {CALLER} in (a.student_id, a.counselor_id)))"
    f" or (appointment_id is null and participants ? ({CALLER})::text)"
)
POLICIES += [
    ("video_call_sessions", "video_sessions_select", "SELECT", VIDEO_PARTY, None),
    ("video_call_sessions", "video_sessions_insert", "INSERT", None, VIDEO_PARTY),
    ("video_call_sessions", "video_sessions_update", "UPDATE", VIDEO_PARTY, VIDEO_PARTY),
]

RLS_TABLES = ["profiles", "chat_conversations", "chat_messages", "appointments", "video_call_sessions"]


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'profiles',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('first_name', sa.String(), nullable=False, server_default=''),
        sa.Column('last_name', sa.String(), nullable=False, server_default=''),
        sa.Column('phone', sa.String(), nullable=True),
        sa.Column('profile_image_url', sa.Text(), nullable=True),
        sa.Column('role', sa.String(), nullable=False, server_default='student'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("role in ('student','counselor','admin')", name='ck_profiles_role'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_profiles_email', 'profiles', ['email'], unique=True)

    op.create_table(
        'chat_conversations',
        sa.Column('id', BigIntPK, autoincrement=True, nullable=False),
        sa.Column('student_id', sa.Uuid(), nullable=False),
        sa.Column('counselor_id', sa.Uuid(), nullable=False),
        sa.Column('conversation_type', sa.String(), nullable=False, server_default='support'),
        sa.Column('status', sa.String(), nullable=False, server_default='active'),
        sa.Column('started_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column('last_message_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "conversation_type in ('support','consultation','emergency')", name='ck_conversations_type'
        ),
        sa.CheckConstraint("status in ('active','ended','archived')", name='ck_conversations_status'),
        sa.ForeignKeyConstraint(['student_id'], ['profiles.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['counselor_id'], ['profiles.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_conversations_student', 'chat_conversations', ['student_id'])
    op.create_index('idx_conversations_counselor', 'chat_conversations', ['counselor_id'])

    op.create_table(
        'chat_messages',
        sa.Column('id', BigIntPK, autoincrement=True, nullable=False),
        sa.Column('conversation_id', BigIntPK, nullable=False),
        sa.Column('sender_id', sa.Uuid(), nullable=False),
        sa.Column('message_type', sa.String(), nullable=False, server_default='text'),
        sa.Column('content', sa.Text(), nullable=True),
        sa.Column('file_url', sa.Text(), nullable=True),
        sa.Column('file_name', sa.String(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='sent'),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.CheckConstraint("message_type in ('text','file','image','video')", name='ck_messages_type'),
        sa.CheckConstraint("status in ('sent','delivered','read')", name='ck_messages_status'),
        sa.ForeignKeyConstraint(['conversation_id'], ['chat_conversations.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['sender_id'], ['profiles.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'idx_messages_conversation_time', 'chat_messages', ['conversation_id', 'created_at']
    )

    op.create_table(
        'appointments',
        sa.Column('id', BigIntPK, autoincrement=True, nullable=False),
        sa.Column('student_id', sa.Uuid(), nullable=False),
        sa.Column('counselor_id', sa.Uuid(), nullable=False),
        sa.Column('conversation_id', BigIntPK, nullable=True),
        sa.Column('appointment_type', sa.String(), nullable=False, server_default='video'),
        sa.Column('status', sa.String(), nullable=False, server_default='scheduled'),
        sa.Column('scheduled_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('scheduled_end', sa.DateTime(timezone=True), nullable=False),
        sa.Column('meeting_url', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('reason_for_visit', sa.Text(), nullable=True),
        sa.Column('is_emergency', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.CheckConstraint("appointment_type in ('chat','video','in_person')", name='ck_appointments_type'),
        sa.CheckConstraint(
            "status in ('scheduled','confirmed','in_progress','completed','cancelled')",
            name='ck_appointments_status',
        ),
        sa.CheckConstraint('scheduled_start < scheduled_end', name='ck_appointments_window'),
        sa.ForeignKeyConstraint(['student_id'], ['profiles.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['counselor_id'], ['profiles.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['conversation_id'], ['chat_conversations.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_appointments_student', 'appointments', ['student_id'])
    op.create_index('idx_appointments_counselor', 'appointments', ['counselor_id'])

    op.create_table(
        'video_call_sessions',
        sa.Column('id', BigIntPK, autoincrement=True, nullable=False),
        sa.Column('appointment_id', BigIntPK, nullable=True),
        sa.Column('room_id', sa.String(), nullable=False),
        sa.Column('participants', JSONList, nullable=False),
        sa.Column('call_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('call_ended_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('call_duration', sa.Integer(), nullable=True),
        sa.Column('recording_url', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.ForeignKeyConstraint(['appointment_id'], ['appointments.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('room_id', name='uq_video_call_sessions_room_id'),
    )

    # Row-level security only exists on Postgres
    if op.get_bind().dialect.name != 'postgresql':
        return

    for table in RLS_TABLES:
        op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY")
        # The app usually connects as the table owner
        op.execute(f"ALTER TABLE {table} FORCE ROW LEVEL SECURITY")

    for table, name, command, using, check in POLICIES:
        sql = f"CREATE POLICY {name} ON {table} FOR {command}"
        if using is not None:
            sql += f" USING ({using})"
        if check is not None:
            sql += f" WITH CHECK ({check})"
        op.execute(sql)


def downgrade() -> None:
    """Downgrade schema."""
    if op.get_bind().dialect.name == 'postgresql':
        for table, name, *_ in POLICIES:
            op.execute(f"DROP POLICY IF EXISTS {name} ON {table}")

    op.drop_table('video_call_sessions')
    op.drop_index('idx_appointments_counselor', table_name='appointments')
    op.drop_index('idx_appointments_student', table_name='appointments')
    op.drop_table('appointments')
    op.drop_index('idx_messages_conversation_time', table_name='chat_messages')
    op.drop_table('chat_messages')
    op.drop_index('idx_conversations_counselor', table_name='chat_conversations')
    op.drop_index('idx_conversations_student', table_name='chat_conversations')
    op.drop_table('chat_conversations')
    op.drop_index('ix_profiles_email', table_name='profiles')
    op.drop_table('profiles')
