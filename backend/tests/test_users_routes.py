from __future__ import annotations

from app.auth.identity import Identity
from app.models.user import User
from app.services.users import reconcile_principal


# ---------------------------------------------------------------------------
# POST /users/sync
# ---------------------------------------------------------------------------


def test_sync_requires_principal(anonymous_client, db_session, default_origin):
    resp = anonymous_client.post("/users/sync", json={}, headers={"Origin": default_origin})

    assert resp.status_code == 401
    assert resp.json()["error"] == "UNAUTHORIZED"
    assert resp.headers["access-control-allow-origin"] == default_origin
    assert resp.headers["access-control-allow-credentials"] == "true"
    assert db_session.query(User).count() == 0


def test_sync_creates_then_reports_in_sync(client, db_session):
    first = client.post("/users/sync", json={"userId": "user_2abc"})
    second = client.post("/users/sync", json={"userId": "user_2abc"})

    assert first.status_code == 200
    assert first.json()["outcome"] == "created"
    assert first.json()["user"] == {"id": "user_2abc", "email": "ada@example.com", "name": "Ada Lovelace"}
    assert second.json()["outcome"] == "unchanged"
    assert second.json()["message"] == "User already in sync"
    assert db_session.query(User).count() == 1


def test_sync_without_body_uses_principal(client, db_session):
    resp = client.post("/users/sync")

    assert resp.status_code == 200
    assert db_session.get(User, "user_2abc").email == "ada@example.com"


def test_sync_rejects_other_subject(client, db_session):
    resp = client.post("/users/sync", json={"userId": "user_someone_else"})

    assert resp.status_code == 403
    assert resp.json()["error"] == "FORBIDDEN"
    assert db_session.query(User).count() == 0


def test_sync_uses_body_hints_when_claims_are_bare(client_for, db_session):
    bare = Identity(subject_id="user_bare", is_authenticated=True)

    with client_for(bare) as c:
        resp = c.post("/users/sync", json={"email": "Bare@X.com", "name": "Bare User"})

    assert resp.status_code == 200
    user = db_session.get(User, "user_bare")
    assert (user.email, user.name) == ("bare@x.com", "Bare User")


def test_sync_without_any_email_uses_placeholder(client_for, db_session):
    bare = Identity(subject_id="user_bare", is_authenticated=True)

    with client_for(bare) as c:
        resp = c.post("/users/sync", json={})

    assert resp.status_code == 200
    assert resp.json()["user"]["email"] == "user_bare@example.invalid"
    assert resp.json()["user"]["name"] == "New User"


# ---------------------------------------------------------------------------
# GET /users/current
# ---------------------------------------------------------------------------


def test_current_user_anonymous(anonymous_client):
    resp = anonymous_client.get("/users/current")

    assert resp.status_code == 200
    assert resp.json() == {"authenticated": False, "user": None}


def test_current_user_not_yet_provisioned(client):
    resp = client.get("/users/current")

    assert resp.status_code == 200
    body = resp.json()
    assert body["authenticated"] is True
    assert body["user"] == {"id": "user_2abc", "provisioned": False}
    assert body["message"] == "User exists in identity provider but not in database yet"


def test_current_user_provisioned(client, db_session):
    reconcile_principal(db_session, "user_2abc", "ada@example.com", "Ada Lovelace")

    resp = client.get("/users/current")

    assert resp.status_code == 200
    user = resp.json()["user"]
    assert user["id"] == "user_2abc"
    assert user["email"] == "ada@example.com"
    assert user["name"] == "Ada Lovelace"
    assert user["provisioned"] is True
    assert user["createdAt"]


# ---------------------------------------------------------------------------
# GET /auth/check
# ---------------------------------------------------------------------------


def test_auth_check_anonymous(anonymous_client):
    resp = anonymous_client.get("/auth/check")

    assert resp.status_code == 200
    assert resp.json() == {"isAuthenticated": False, "userId": None, "message": "User not authenticated"}


def test_auth_check_authenticated(client):
    resp = client.get("/auth/check")

    assert resp.json() == {"isAuthenticated": True, "userId": "user_2abc"}


def test_health(anonymous_client):
    assert anonymous_client.get("/health").json() == {"status": "ok"}
