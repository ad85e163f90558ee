import settings
from conftest import bearer


def register(client, **overrides):
    body = {"name": "Ravi Kumar", "email": "Ravi@Example.com", "password": "secret123", "phone": "9123456780", **overrides}
    return client.post("/api/auth/register", json=body)


def test_health(client):
    assert client.get("/").json() == {"message": "FurniShop API running"}
    assert client.get("/test").json()["connection_status"] == "Connected"


def test_register_and_me(client, mongo):
    res = register(client)
    assert res.status_code == 201
    data = res.json()
    assert data["user"]["email"] == "ravi@example.com"
    assert data["user"]["role"] == "user"
    assert "password_hash" not in data["user"]
    assert mongo["user"].find_one({"email": "ravi@example.com"})["password_hash"] != "secret123"

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {data['token']}"})
    assert me.status_code == 200
    assert me.json()["name"] == "Ravi Kumar"
    assert "password_hash" not in me.json()


def test_duplicate_email(client):
    register(client)
    res = register(client, email="ravi@example.com")
    assert res.status_code == 400
    assert res.json()["detail"] == "Email already registered"


def test_register_validation(client):
    assert register(client, phone="12345").status_code == 422
    assert register(client, password="123").status_code == 422


def test_login(client, user):
    res = client.post("/api/auth/login", json={"email": "asha@example.com", "password": "secret123"})
    assert res.status_code == 200
    assert res.json()["user"]["id"] == str(user["_id"])
    bad = client.post("/api/auth/login", json={"email": "asha@example.com", "password": "nope"})
    assert bad.status_code == 401


def test_admin_login_rejects_customers(client, user, admin):
    res = client.post("/api/auth/admin/login", json={"email": "asha@example.com", "password": "secret123"})
    assert res.status_code == 403
    res = client.post("/api/auth/admin/login", json={"email": "admin@furnishop.com", "password": "secret123"})
    assert res.status_code == 200
    assert res.json()["user"]["role"] == "admin"


def test_admin_register_needs_key(client, monkeypatch):
    body = {"name": "Ops Lead", "email": "ops@furnishop.com", "password": "secret123", "admin_key": "letmein"}
    assert client.post("/api/auth/admin/register", json=body).status_code == 403
    monkeypatch.setattr(settings, "ADMIN_REGISTRATION_KEY", "letmein")
    res = client.post("/api/auth/admin/register", json=body)
    assert res.status_code == 201
    assert res.json()["user"]["role"] == "admin"


def test_bad_tokens(client):
    assert client.get("/api/auth/me").status_code == 401
    res = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert res.status_code == 401
    assert res.json()["detail"] == "Invalid token"


def test_users_list_is_admin_only(client, user, admin):
    assert client.get("/api/users", headers=bearer(user)).status_code == 403
    res = client.get("/api/users", headers=bearer(admin))
    assert res.status_code == 200
    emails = {u["email"] for u in res.json()}
    assert emails == {"asha@example.com", "admin@furnishop.com"}
    assert all("password_hash" not in u for u in res.json())


def test_api_answers_503_without_database(client, monkeypatch):
    import main

    monkeypatch.setattr(main, "db", None)
    res = client.get("/api/products")
    assert res.status_code == 503
    assert res.json() == {"detail": "Database not configured"}


def test_seed_is_idempotent(client, mongo):
    first = client.post("/seed").json()
    assert first["seeded"] is True
    assert first["admin_created"] is True
    second = client.post("/seed").json()
    assert second["seeded"] is False
    assert second["products"] == first["products"]
    assert mongo["user"].count_documents({"role": "admin"}) == 1


def test_startup_creates_indexes(mongo, monkeypatch):
    import mongomock
    from fastapi.testclient import TestClient

    import main

    fresh = mongomock.MongoClient()["furnishop_startup"]
    monkeypatch.setattr(main, "db", fresh)
    with TestClient(main.app):
        pass
    assert any(ix.get("unique") for ix in fresh["user"].index_information().values())
    assert any(ix.get("unique") for ix in fresh["order"].index_information().values())
