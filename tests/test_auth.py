from conftest import make_user
from formdesk.core.security import (
    SESSION_VERSION,
    _sessions,
    generate_password,
    hash_password,
    issue_session,
    read_session,
)
from formdesk.db.models.user import Role, User


def _user(db, active=True):
    u = make_user(db, Role.LEAD)
    u.password_hash = hash_password("s3cret")
    u.is_active = active
    db.commit()
    return u


def test_login_sets_session_cookie(db, client):
    u = _user(db)
    resp = client.post("/auth/login", data={"email": u.email, "password": "s3cret"})
    assert resp.status_code == 200
    assert resp.json()["user"]["role"] == "lead"
    assert client.get("/auth/me").json()["user"]["id"] == u.id


def test_login_wrong_password(db, client):
    u = _user(db)
    resp = client.post("/auth/login", data={"email": u.email, "password": "nope"})
    assert resp.status_code == 400


def test_disabled_account(db, client):
    u = _user(db, active=False)
    assert client.post("/auth/login", data={"email": u.email, "password": "s3cret"}).status_code == 403


def test_protected_routes_need_session(client):
    assert client.get("/auth/me").status_code == 401
    client.cookies.set("sid", "garbage")
    assert client.get("/entities").status_code == 401


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"
    assert client.get("/health/db").json() == {"status": "ok", "database": "reachable"}


def test_session_cookie_round_trip_and_rejections(db):
    assert read_session(issue_session(7)) == 7
    assert read_session(issue_session(7) + "x") is None
    # payloads from an older cookie layout are refused
    assert read_session(_sessions.dumps({"user_id": 7})) is None
    assert read_session(_sessions.dumps({"v": SESSION_VERSION + 1, "uid": 7})) is None
    assert read_session(_sessions.dumps({"v": SESSION_VERSION, "uid": "7"})) is None


def test_outdated_cookie_is_unauthorized(db, client):
    u = _user(db)
    client.cookies.set("sid", _sessions.dumps({"v": SESSION_VERSION - 1, "uid": u.id}))
    assert client.get("/auth/me").status_code == 401


def test_login_with_unrecognized_hash_is_rejected(db, client):
    u = make_user(db, Role.MEMBER)  # placeholder hash
    resp = client.post("/auth/login", data={"email": u.email, "password": "not-a-real-hash"})
    assert resp.status_code == 400


def test_login_writes_back_upgraded_hash(db, client, monkeypatch):
    u = _user(db)
    monkeypatch.setattr("formdesk.auth.router.check_password", lambda pw, h: (True, "upgraded-hash"))
    assert client.post("/auth/login", data={"email": u.email, "password": "s3cret"}).status_code == 200
    db.expire_all()
    assert db.get(User, u.id).password_hash == "upgraded-hash"


def test_generated_passwords():
    pw = generate_password()
    assert len(pw) == 12 and pw.isalnum()
    assert generate_password() != pw
