import uuid

from portal.models import Appointment, Conversation, Message, Profile, VideoSession
from portal.services.policy import Caller, Operation, permitted_operations

STUDENT = Caller(id=uuid.uuid4(), role="student")
COUNSELOR = Caller(id=uuid.uuid4(), role="counselor")
OUTSIDER = Caller(id=uuid.uuid4(), role="student")


def conversation():
    return Conversation(id=1, student_id=STUDENT.id, counselor_id=COUNSELOR.id, status="active")


def appointment():
    return Appointment(id=7, student_id=STUDENT.id, counselor_id=COUNSELOR.id)


def test_profile_readable_by_anyone_writable_by_owner():
    profile = Profile(id=STUDENT.id, email="a@campus.edu", role="student")
    assert permitted_operations(STUDENT, profile) == {Operation.READ, Operation.INSERT, Operation.UPDATE}
    assert permitted_operations(OUTSIDER, profile) == {Operation.READ}


def test_conversation_parties():
    conv = conversation()
    assert Operation.INSERT in permitted_operations(STUDENT, conv)
    assert permitted_operations(COUNSELOR, conv) == {Operation.READ, Operation.UPDATE}
    assert permitted_operations(OUTSIDER, conv) == set()


def test_counselor_cannot_open_conversation_as_student():
    conv = Conversation(student_id=COUNSELOR.id, counselor_id=uuid.uuid4())
    assert Operation.INSERT not in permitted_operations(COUNSELOR, conv)


def test_message_insert_requires_sender_to_be_caller():
    conv = conversation()
    own = Message(conversation_id=1, sender_id=STUDENT.id)
    forged = Message(conversation_id=1, sender_id=COUNSELOR.id)

    assert Operation.INSERT in permitted_operations(STUDENT, own, parent=conv)
    assert Operation.INSERT not in permitted_operations(STUDENT, forged, parent=conv)


def test_message_status_update_only_by_recipient():
    conv = conversation()
    msg = Message(conversation_id=1, sender_id=STUDENT.id)
    assert Operation.UPDATE not in permitted_operations(STUDENT, msg, parent=conv)
    assert Operation.UPDATE in permitted_operations(COUNSELOR, msg, parent=conv)


def test_message_needs_matching_parent():
    msg = Message(conversation_id=2, sender_id=STUDENT.id)
    assert permitted_operations(STUDENT, msg) == set()
    assert permitted_operations(STUDENT, msg, parent=conversation()) == set()
    assert permitted_operations(OUTSIDER, Message(conversation_id=1, sender_id=OUTSIDER.id), parent=conversation()) == set()


def test_video_session_linked_to_appointment():
    session = VideoSession(appointment_id=7, room_id="sathi-room-1", participants=[])
    assert Operation.READ in permitted_operations(COUNSELOR, session, parent=appointment())
    assert permitted_operations(OUTSIDER, session, parent=appointment()) == set()
    assert permitted_operations(STUDENT, session) == set()


def test_ad_hoc_video_session_uses_participants():
    session = VideoSession(appointment_id=None, room_id="sathi-call-1", participants=[str(STUDENT.id)])
    assert Operation.UPDATE in permitted_operations(STUDENT, session)
    assert permitted_operations(COUNSELOR, session) == set()
