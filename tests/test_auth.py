from __future__ import annotations
from werkzeug.security import generate_password_hash

from extensions import db
from models import User, UserRole

def _get_csrf(client):
    r = client.get("/api/v1/csrf")
    assert r.status_code == 200
    return r.get_json()["csrf"]

def test_unauthorized_401(client, world):
    r = client.get("/api/v1/auth/me")
    assert r.status_code == 401
    assert r.get_json() == {"ok": False, "error": "unauthorized"}

def test_forbidden_403(world, login):
    r = login("liya@example.com").get("/api/v1/schedule/stats")
    assert r.status_code == 403
    assert r.get_json()["error"] == "forbidden"

def test_login_success_and_me(client, world):
    r = client.post("/api/v1/auth/login", json={"email": "Abebe@Example.com ", "password": "pass"})
    assert r.status_code == 200
    js = r.get_json()
    assert js["ok"] is True and js["user"]["role"] == "INSTRUCTOR"
    me = client.get("/api/v1/auth/me").get_json()["user"]
    assert me["id"] == world.abebe
    assert me["full_name"] == "Abebe Kebede"
    assert me["department"] == "ICT"

def test_login_errors(client, world):
    assert client.post("/api/v1/auth/login", json={"email": "abebe@example.com"}).status_code == 400
    r = client.post("/api/v1/auth/login", json={"email": "abebe@example.com", "password": "wrong"})
    assert r.status_code == 401
    assert r.get_json()["error"] == "invalid_credentials"

def test_inactive_user_cannot_login(app, client, world):
    with app.app_context():
        db.session.add(User(
            email="gone@example.com", password_hash=generate_password_hash("pass"),
            role=UserRole.INSTRUCTOR.value, first_name="Old", father_name="Staff", is_active=False,
        ))
        db.session.commit()
    r = client.post("/api/v1/auth/login", json={"email": "gone@example.com", "password": "pass"})
    assert r.status_code == 403
    assert r.get_json()["error"] == "inactive"

def test_rate_limit_login(app, client, world):
    app.config["AUTH_RL_MAX"] = 3
    for _ in range(3):
        r = client.post("/api/v1/auth/login", json={"email": "x@example.com", "password": "wrong"})
        assert r.status_code == 401
    r2 = client.post("/api/v1/auth/login", json={"email": "x@example.com", "password": "wrong"})
    assert r2.status_code == 429
    # другой email считается отдельно
    r3 = client.post("/api/v1/auth/login", json={"email": "abebe@example.com", "password": "pass"})
    assert r3.status_code == 200

def test_logout(world, login):
    c = login("hana@example.com")
    assert c.post("/api/v1/auth/logout").status_code == 200
    # теперь защищённый ресурс снова 401
    assert c.get("/api/v1/auth/me").status_code == 401

def test_csrf_token_required_when_enabled(app, client, world):
    app.config["WTF_CSRF_ENABLED"] = True
    creds = {"email": "abebe@example.com", "password": "pass"}
    r = client.post("/api/v1/auth/login", json=creds)
    assert r.status_code == 400
    assert r.get_json()["error"] == "csrf_failed"

    token = _get_csrf(client)
    r = client.post("/api/v1/auth/login", json=creds, headers={"X-CSRF-Token": token})
    assert r.status_code == 200
