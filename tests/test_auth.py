from bson import ObjectId

from conftest import PASSWORD, login, register


def test_register_hides_password(client, db):
    user = register(client, "carol@shopmail.com", name="Carol")
    assert user["name"] == "Carol"
    assert user["role"] == "user"
    assert user["active"] is True
    assert "password" not in user

    stored = db["user"].find_one({"_id": ObjectId(user["id"])})
    assert stored["password"] != PASSWORD


def test_register_duplicate_email(client):
    register(client, "carol@shopmail.com")
    response = client.post("/api/auth/register",
                           json={"name": "Again", "email": "carol@shopmail.com", "password": PASSWORD})
    assert response.status_code == 400
    assert response.json()["error"] == "Email already registered"


def test_register_missing_password(client):
    response = client.post("/api/auth/register", json={"name": "Carol", "email": "carol@shopmail.com"})
    assert response.status_code == 400
    assert "password" in response.json()["error"]


def test_register_ignores_requested_role(client):
    response = client.post("/api/auth/register",
                           json={"name": "Eve", "email": "eve@shopmail.com", "password": PASSWORD, "role": "admin"})
    assert response.status_code == 201
    assert response.json()["user"]["role"] == "user"


def test_login_wrong_password(client, user):
    response = client.post("/api/auth/login", json={"email": "alice@shopmail.com", "password": "wrong-password"})
    assert response.status_code == 401


def test_login_unknown_email(client):
    response = client.post("/api/auth/login", json={"email": "nobody@shopmail.com", "password": PASSWORD})
    assert response.status_code == 404


def test_list_users_requires_token(client):
    assert client.get("/api/auth/users").status_code == 401


def test_list_users_rejects_bad_token(client):
    response = client.get("/api/auth/users", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401


def test_list_users_requires_admin(client, user):
    _, headers = user
    assert client.get("/api/auth/users", headers=headers).status_code == 403


def test_list_users_as_admin(client, user, admin):
    _, headers = admin
    response = client.get("/api/auth/users", headers=headers)
    assert response.status_code == 200
    users = response.json()
    assert {u["email"] for u in users} == {"alice@shopmail.com", "admin@shopmail.com"}
    assert all("password" not in u for u in users)


def test_user_reads_own_record(client, user):
    account, headers = user
    response = client.get(f"/api/auth/users/{account['id']}", headers=headers)
    assert response.status_code == 200
    assert response.json()["email"] == "alice@shopmail.com"


def test_user_cannot_read_other_record(client, user, other_user):
    _, headers = user
    other, _ = other_user
    assert client.get(f"/api/auth/users/{other['id']}", headers=headers).status_code == 403


def test_admin_reads_any_record(client, user, admin):
    account, _ = user
    _, headers = admin
    assert client.get(f"/api/auth/users/{account['id']}", headers=headers).status_code == 200


def test_admin_unknown_or_malformed_id(client, admin):
    _, headers = admin
    assert client.get(f"/api/auth/users/{ObjectId()}", headers=headers).status_code == 404
    assert client.get("/api/auth/users/not-an-id", headers=headers).status_code == 404


def test_update_own_record_and_password(client, user):
    account, headers = user
    response = client.put(f"/api/auth/users/{account['id']}", headers=headers,
                          json={"phone": "555-0100", "password": "another-secret"})
    assert response.status_code == 200
    updated = response.json()["user"]
    assert updated["phone"] == "555-0100"
    assert updated["name"] == "Alice"
    assert "password" not in updated

    login(client, "alice@shopmail.com", password="another-secret")


def test_user_cannot_change_own_role(client, user):
    account, headers = user
    response = client.put(f"/api/auth/users/{account['id']}", headers=headers, json={"role": "admin"})
    assert response.status_code == 403


def test_update_to_taken_email(client, user, other_user):
    account, headers = user
    response = client.put(f"/api/auth/users/{account['id']}", headers=headers, json={"email": "bob@shopmail.com"})
    assert response.status_code == 400


def test_delete_user(client, user, admin):
    account, user_headers = user
    _, headers = admin
    assert client.delete(f"/api/auth/users/{account['id']}", headers=user_headers).status_code == 403

    response = client.delete(f"/api/auth/users/{account['id']}", headers=headers)
    assert response.status_code == 200
    assert client.get(f"/api/auth/users/{account['id']}", headers=headers).status_code == 404
    # the deleted user's token no longer authenticates
    assert client.get(f"/api/auth/users/{account['id']}", headers=user_headers).status_code == 401


def test_inactive_user_is_rejected(client, db, user):
    account, headers = user
    db["user"].update_one({"_id": ObjectId(account["id"])}, {"$set": {"active": False}})
    assert client.get(f"/api/auth/users/{account['id']}", headers=headers).status_code == 401
