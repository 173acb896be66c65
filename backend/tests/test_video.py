import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite

from conftest import auth
from portal.models import VideoSession
from portal.services.policy import Caller, readable_clause
from portal.services.video_service import make_room_id, meeting_url


def test_room_id_format():
    now = datetime(2026, 1, 5, 9, 30, tzinfo=timezone.utc)
    assert make_room_id("call", now) == f"sathi-call-{int(now.timestamp() * 1000)}"
    assert meeting_url("sathi-call-1") == "https://meet.jit.si/sathi-call-1"


def test_quick_room_is_not_recorded(client, profiles):
    student = auth(profiles["student"])
    resp = client.post("/video/quick", headers=student)
    assert resp.status_code == 200
    room = resp.json()
    assert room["room_id"].startswith("sathi-quick-")
    assert room["meeting_url"].endswith(room["room_id"])
    assert client.get("/video/rooms", headers=student).json() == []


def test_ad_hoc_room_visible_to_participants_only(client, profiles):
    resp = client.post("/video/rooms", json={"context": "call"}, headers=auth(profiles["student"]))
    assert resp.status_code == 201, resp.text
    room = resp.json()
    assert room["room_id"].startswith("sathi-call-")
    assert room["participants"] == [str(profiles["student"])]
    assert room["meeting_url"] == f"https://meet.jit.si/{room['room_id']}"

    listed = client.get("/video/rooms", headers=auth(profiles["student"])).json()
    assert [r["room_id"] for r in listed] == [room["room_id"]]
    assert client.get("/video/rooms", headers=auth(profiles["counselor"])).json() == []
    resp = client.get(f"/video/rooms/{room['room_id']}", headers=auth(profiles["counselor"]))
    assert resp.status_code == 403


def test_room_listing_filters_ad_hoc_rooms_in_sql(client, profiles):
    mine = client.post("/video/rooms", json={"context": "call"}, headers=auth(profiles["student"])).json()
    client.post("/video/rooms", json={"room_id": "sathi-call-1"}, headers=auth(profiles["other_student"]))

    listed = client.get("/video/rooms", headers=auth(profiles["student"])).json()
    assert [r["room_id"] for r in listed] == [mine["room_id"]]
    listed = client.get("/video/rooms", headers=auth(profiles["other_student"])).json()
    assert [r["room_id"] for r in listed] == ["sathi-call-1"]


@pytest.mark.parametrize("dialect, marker", [(sqlite.dialect(), "json_each"), (postgresql.dialect(), "@>")])
def test_participant_predicate_compiles_per_dialect(dialect, marker):
    caller = Caller(id=uuid.uuid4(), role="student")
    compiled = str(select(VideoSession.id).where(readable_clause(caller, VideoSession)).compile(dialect=dialect))
    assert marker in compiled


def test_duplicate_room_id_conflicts(client, profiles):
    body = {"room_id": "sathi-room-1700000000000"}
    first = client.post("/video/rooms", json=body, headers=auth(profiles["student"]))
    assert first.status_code == 201
    second = client.post("/video/rooms", json=body, headers=auth(profiles["counselor"]))
    assert second.status_code == 409


def test_appointment_room_shared_by_both_parties(client, profiles):
    start = datetime.now(timezone.utc) + timedelta(minutes=10)
    appt = client.post(
        "/appointments",
        json={
            "counselor_id": str(profiles["counselor"]),
            "scheduled_start": start.isoformat(),
            "scheduled_end": (start + timedelta(minutes=50)).isoformat(),
        },
        headers=auth(profiles["student"]),
    ).json()

    resp = client.post("/video/rooms", json={"appointment_id": appt["id"]}, headers=auth(profiles["counselor"]))
    assert resp.status_code == 201
    room = resp.json()
    assert set(room["participants"]) == {str(profiles["student"]), str(profiles["counselor"])}

    student_rooms = client.get("/video/rooms", headers=auth(profiles["student"])).json()
    assert [r["id"] for r in student_rooms] == [room["id"]]

    resp = client.post("/video/rooms", json={"appointment_id": appt["id"]}, headers=auth(profiles["other_student"]))
    assert resp.status_code == 403
    resp = client.post("/video/rooms", json={"appointment_id": 424242}, headers=auth(profiles["student"]))
    assert resp.status_code == 404


def test_end_call_records_duration_once(client, profiles):
    student = auth(profiles["student"])
    room = client.post("/video/rooms", json={}, headers=student).json()

    resp = client.post(f"/video/rooms/{room['room_id']}/end", headers=student)
    assert resp.status_code == 200
    ended = resp.json()
    assert ended["call_ended_at"] is not None
    assert ended["call_duration"] >= 0

    assert client.post(f"/video/rooms/{room['room_id']}/end", headers=student).status_code == 409
    assert client.post("/video/rooms/sathi-room-0/end", headers=student).status_code == 404
