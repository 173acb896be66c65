import uuid

from conftest import auth


def test_health(client):
    assert client.get("/health").json() == {"ok": True}
    assert client.get("/db-health").json() == {"db": "ok", "result": 1}


def test_signup_inserts_own_profile(client):
    identity = uuid.uuid4()
    headers = auth(identity)

    # No row yet: only the insert endpoint accepts this identity
    assert client.get("/profiles/me", headers=headers).status_code == 401

    resp = client.post(
        "/profiles",
        json={"email": "new.student@campus.edu", "first_name": "Ara", "last_name": "Han"},
        headers=headers,
    )
    assert resp.status_code == 201, resp.text
    body = resp.json()
    assert body["id"] == str(identity)
    assert body["role"] == "student"

    me = client.get("/profiles/me", headers=headers).json()
    assert me["email"] == "new.student@campus.edu"

    again = client.post("/profiles", json={"email": "other@campus.edu"}, headers=headers)
    assert again.status_code == 409


def test_duplicate_email_conflicts(client, profiles):
    resp = client.post("/profiles", json={"email": "student1@campus.edu"}, headers=auth(uuid.uuid4()))
    assert resp.status_code == 409


def test_profiles_update_is_owner_only(client, profiles):
    url = f"/profiles/{profiles['student']}"
    resp = client.put(url, json={"phone": "010-1234-5678"}, headers=auth(profiles["student"]))
    assert resp.status_code == 200
    assert resp.json()["phone"] == "010-1234-5678"

    resp = client.put(url, json={"first_name": "Hacked"}, headers=auth(profiles["counselor"]))
    assert resp.status_code == 403

    # Still readable by others
    resp = client.get(url, headers=auth(profiles["counselor"]))
    assert resp.status_code == 200
    assert resp.json()["first_name"] == "Mina"


def test_counselor_directory(client, profiles):
    listed = client.get("/profiles/counselors", headers=auth(profiles["student"])).json()
    assert {p["id"] for p in listed} == {str(profiles["counselor"]), str(profiles["other_counselor"])}
    assert client.get(f"/profiles/{uuid.uuid4()}", headers=auth(profiles["student"])).status_code == 404


def test_storage_outage_surfaces_as_transient(client):
    from sqlalchemy.exc import OperationalError

    from portal.db import get_db
    from portal.main import app

    async def broken_db():
        raise OperationalError("SELECT 1", {}, ConnectionRefusedError("database is down"))
        yield  # pragma: no cover

    app.dependency_overrides[get_db] = broken_db
    resp = client.get("/db-health")
    assert resp.status_code == 503
    assert resp.json() == {"detail": "Service temporarily unavailable"}
