from common.models import RoleEnum

ADMIN_PAYLOAD = {
    "name": "Admin",
    "username": "admin",
    "email": "admin@example.com",
    "password": "Passw0rd!",
    "role": RoleEnum.ADMIN.value,
}


def test_user_registration_and_listing(users_client, admin_headers, register_user):
    register_user("jane")

    list_resp = users_client.get("/users", headers=admin_headers)
    assert list_resp.status_code == 200
    assert [user["username"] for user in list_resp.json()] == ["admin", "jane"]


def test_listing_is_admin_only(users_client, register_user):
    headers = register_user("jane")

    assert users_client.get("/users", headers=headers).status_code == 403


def test_second_admin_cannot_self_register(users_client, admin_headers):
    resp = users_client.post(
        "/users/register",
        json={**ADMIN_PAYLOAD, "username": "mallory", "email": "mallory@example.com"},
    )
    assert resp.status_code == 403


def test_bad_login(users_client, admin_headers):
    resp = users_client.post(
        "/users/login",
        data={"username": "admin", "password": "wrong-password"},
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    assert resp.status_code == 401


def test_user_update_self(users_client, register_user):
    headers = register_user("jane")

    update_resp = users_client.put("/users/jane", json={"name": "Jane Updated"}, headers=headers)
    assert update_resp.status_code == 200
    assert update_resp.json()["name"] == "Jane Updated"


def test_users_cannot_read_each_other(users_client, register_user):
    register_user("jane")
    headers = register_user("john")

    assert users_client.get("/users/jane", headers=headers).status_code == 403
    assert users_client.get("/users/jane/memberships", headers=headers).status_code == 403
