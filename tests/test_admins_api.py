from mentacare.auth import check_password
from mentacare.repos import AdminRepo


def _data(resp):
    return resp.get_json()["data"]


def test_super_admin_registers_admin(client, login, store):
    login("super_admin")

    resp = client.post(
        "/api/admins",
        json={"name": "Nia", "email": "nia@example.com", "password": "hunter22", "permissions": ["manage_patients"]},
    )

    assert resp.status_code == 201
    data = _data(resp)
    assert data["role"] == "admin"
    assert data["permissions"] == ["manage_patients"]
    assert "password" not in data
    stored = AdminRepo(store).get(data["id"])
    assert stored.password != "hunter22"
    assert check_password(stored.password, "hunter22")


def test_duplicate_admin_email(client, login, make_admin):
    login("super_admin")
    make_admin("admin", email="dup@example.com")

    resp = client.post("/api/admins", json={"name": "Dup", "email": "dup@example.com", "password": "hunter22"})

    assert resp.status_code == 400
    assert resp.get_json()["message"] == "Admin already exists"


def test_short_password_is_rejected(client, login):
    login("super_admin")
    resp = client.post("/api/admins", json={"name": "X", "email": "x@example.com", "password": "123"})
    assert resp.status_code == 400


def test_plain_admin_cannot_register_or_delete(client, login, make_admin):
    target = make_admin("admin")
    login("admin")

    payload = {"name": "X", "email": "x@example.com", "password": "hunter22"}
    assert client.post("/api/admins", json=payload).status_code == 403
    assert client.delete(f"/api/admins/{target.id}").status_code == 403


def test_list_and_get_hide_password(client, login, make_admin):
    other = make_admin("admin", email="other@example.com")
    login("admin")

    listed = _data(client.get("/api/admins"))
    single = _data(client.get(f"/api/admins/{other.id}"))

    assert len(listed) == 2
    assert all("password" not in admin for admin in listed)
    assert single["email"] == "other@example.com"
    assert client.get("/api/admins/missing").status_code == 404


def test_update_admin_rehashes_password(client, login, make_admin, store):
    target = make_admin("admin", email="target@example.com")
    login("admin")

    resp = client.put(f"/api/admins/{target.id}", json={"name": "Renamed", "password": "newpass1"})

    assert resp.status_code == 200
    assert _data(resp)["name"] == "Renamed"
    assert check_password(AdminRepo(store).get(target.id).password, "newpass1")


def test_update_admin_email_must_stay_unique(client, login, make_admin):
    make_admin("admin", email="a@example.com")
    target = make_admin("admin", email="b@example.com")
    login("super_admin")

    resp = client.put(f"/api/admins/{target.id}", json={"email": "a@example.com"})

    assert resp.status_code == 400


def test_super_admin_deletes_admin(client, login, make_admin):
    target = make_admin("admin")
    login("super_admin")

    assert client.delete(f"/api/admins/{target.id}").status_code == 200
    assert client.get(f"/api/admins/{target.id}").status_code == 404


def test_therapist_cannot_read_admins(client, login):
    login("therapist")
    assert client.get("/api/admins").status_code == 403
