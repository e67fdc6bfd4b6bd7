"""
tests/test_users_roles_routes.py -- Integration tests for /api/v1/users and /api/v1/roles.

Covers:
  - admin-only listing with pagination, search and isActive filter
  - self-or-admin access to a single user and their roles
  - profile updates: conflicts, isActive reserved to admins
  - role assignment and removal
  - role CRUD, duplicate names, system roles protected from deletion
"""

from __future__ import annotations

from conftest import TEST_PASSWORD, auth_headers, make_admin, register_user

USERS = "/api/v1/users"
ROLES = "/api/v1/roles"


class TestListUsers:
    def test_admin_lists_users_with_pagination(self, api_client) -> None:
        client, service = api_client
        _, admin_token = make_admin(service)
        for i in range(3):
            register_user(client, email=f"user{i}@example.com")

        resp = client.get(USERS, params={"page": 1, "limit": 2}, headers=auth_headers(admin_token))
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert len(data["items"]) == 2
        assert data["pagination"] == {"page": 1, "limit": 2, "total": 4, "totalPages": 2}

    def test_search_and_active_filter(self, api_client) -> None:
        client, service = api_client
        _, admin_token = make_admin(service)
        bob = register_user(client, email="bob@example.com")
        register_user(client, email="carl@example.com")
        service.store.update_user(bob["user"]["id"], is_active=False)

        found = client.get(USERS, params={"search": "BOB"}, headers=auth_headers(admin_token)).json()["data"]
        assert [u["email"] for u in found["items"]] == ["bob@example.com"]

        inactive = client.get(USERS, params={"isActive": "false"}, headers=auth_headers(admin_token)).json()["data"]
        assert [u["email"] for u in inactive["items"]] == ["bob@example.com"]

    def test_limit_is_capped(self, api_client) -> None:
        client, service = api_client
        _, admin_token = make_admin(service)
        resp = client.get(USERS, params={"limit": 101}, headers=auth_headers(admin_token))
        assert resp.status_code == 422

    def test_non_admin_cannot_list(self, api_client) -> None:
        client, _ = api_client
        token = register_user(client)["tokens"]["accessToken"]
        resp = client.get(USERS, headers=auth_headers(token))
        assert resp.status_code == 401
        assert resp.json()["message"] == "Insufficient permissions"


class TestSingleUser:
    def test_user_can_read_self(self, api_client) -> None:
        client, _ = api_client
        data = register_user(client)
        resp = client.get(f"{USERS}/{data['user']['id']}", headers=auth_headers(data["tokens"]["accessToken"]))
        assert resp.status_code == 200
        assert resp.json()["data"]["email"] == "alice@example.com"

    def test_user_cannot_read_others(self, api_client) -> None:
        client, _ = api_client
        alice = register_user(client)
        bob = register_user(client, email="bob@example.com")
        resp = client.get(f"{USERS}/{bob['user']['id']}", headers=auth_headers(alice["tokens"]["accessToken"]))
        assert resp.status_code == 401

    def test_admin_reads_anyone_and_missing_is_404(self, api_client) -> None:
        client, service = api_client
        _, admin_token = make_admin(service)
        alice = register_user(client)
        assert client.get(f"{USERS}/{alice['user']['id']}", headers=auth_headers(admin_token)).status_code == 200
        missing = client.get(f"{USERS}/99999", headers=auth_headers(admin_token))
        assert missing.status_code == 404
        assert missing.json()["error"]["code"] == "NOT_FOUND"

    def test_user_roles_listing(self, api_client) -> None:
        client, service = api_client
        admin_id, admin_token = make_admin(service)
        resp = client.get(f"{USERS}/{admin_id}/roles", headers=auth_headers(admin_token))
        assert resp.status_code == 200
        assert [r["name"] for r in resp.json()["data"]] == ["admin"]
        assert resp.json()["data"][0]["isSystem"] is True


class TestUpdateUser:
    def test_user_updates_own_profile(self, api_client) -> None:
        client, _ = api_client
        data = register_user(client)
        resp = client.put(
            f"{USERS}/{data['user']['id']}",
            json={"firstName": "Alicia", "username": "alicia"},
            headers=auth_headers(data["tokens"]["accessToken"]),
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["data"]["firstName"] == "Alicia"
        assert resp.json()["data"]["username"] == "alicia"

    def test_email_conflict(self, api_client) -> None:
        client, _ = api_client
        alice = register_user(client)
        register_user(client, email="bob@example.com")
        resp = client.put(
            f"{USERS}/{alice['user']['id']}",
            json={"email": "BOB@example.com"},
            headers=auth_headers(alice["tokens"]["accessToken"]),
        )
        assert resp.status_code == 409
        assert resp.json()["message"] == "Email already exists"

    def test_username_conflict(self, api_client) -> None:
        client, _ = api_client
        alice = register_user(client)
        register_user(client, email="bob@example.com", username="bobby")
        resp = client.put(
            f"{USERS}/{alice['user']['id']}",
            json={"username": "bobby"},
            headers=auth_headers(alice["tokens"]["accessToken"]),
        )
        assert resp.status_code == 409
        assert resp.json()["message"] == "Username already exists"

    def test_keeping_own_email_is_not_a_conflict(self, api_client) -> None:
        client, _ = api_client
        alice = register_user(client)
        resp = client.put(
            f"{USERS}/{alice['user']['id']}",
            json={"email": "alice@example.com", "lastName": "Liddell"},
            headers=auth_headers(alice["tokens"]["accessToken"]),
        )
        assert resp.status_code == 200

    def test_only_admin_may_change_active_flag(self, api_client) -> None:
        client, service = api_client
        _, admin_token = make_admin(service)
        alice = register_user(client)
        url = f"{USERS}/{alice['user']['id']}"

        own = client.put(url, json={"isActive": False}, headers=auth_headers(alice["tokens"]["accessToken"]))
        assert own.status_code == 401

        by_admin = client.put(url, json={"isActive": False}, headers=auth_headers(admin_token))
        assert by_admin.status_code == 200
        assert by_admin.json()["data"]["isActive"] is False
        login = client.post("/api/v1/auth/login", json={"email": "alice@example.com", "password": TEST_PASSWORD})
        assert login.json()["message"] == "Account is deactivated"

    def test_empty_update_is_bad_request(self, api_client) -> None:
        client, _ = api_client
        alice = register_user(client)
        resp = client.put(
            f"{USERS}/{alice['user']['id']}", json={}, headers=auth_headers(alice["tokens"]["accessToken"])
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "BAD_REQUEST"


class TestRoleAssignment:
    def test_assign_and_remove_role(self, api_client) -> None:
        client, service = api_client
        _, admin_token = make_admin(service)
        alice = register_user(client)
        role_id = service.store.get_role_by_name("moderator").id
        url = f"{USERS}/{alice['user']['id']}/roles/{role_id}"

        assigned = client.post(url, headers=auth_headers(admin_token))
        assert assigned.status_code == 200
        assert [r["name"] for r in assigned.json()["data"]["roles"]] == ["moderator"]

        again = client.post(url, headers=auth_headers(admin_token))
        assert again.status_code == 409

        removed = client.delete(url, headers=auth_headers(admin_token))
        assert removed.status_code == 200
        assert removed.json()["data"]["roles"] == []

        assert client.delete(url, headers=auth_headers(admin_token)).status_code == 404

    def test_assign_unknown_role_is_404(self, api_client) -> None:
        client, service = api_client
        _, admin_token = make_admin(service)
        alice = register_user(client)
        resp = client.post(f"{USERS}/{alice['user']['id']}/roles/9999", headers=auth_headers(admin_token))
        assert resp.status_code == 404

    def test_non_admin_cannot_assign(self, api_client) -> None:
        client, service = api_client
        alice = register_user(client)
        role_id = service.store.get_role_by_name("admin").id
        resp = client.post(
            f"{USERS}/{alice['user']['id']}/roles/{role_id}",
            headers=auth_headers(alice["tokens"]["accessToken"]),
        )
        assert resp.status_code == 401


class TestRoles:
    def test_list_contains_system_roles(self, api_client) -> None:
        client, service = api_client
        _, admin_token = make_admin(service)
        resp = client.get(ROLES, headers=auth_headers(admin_token))
        assert resp.status_code == 200
        assert {r["name"] for r in resp.json()["data"]} == {"admin", "moderator", "user"}

    def test_create_update_delete_custom_role(self, api_client) -> None:
        client, service = api_client
        _, admin_token = make_admin(service)
        headers = auth_headers(admin_token)

        created = client.post(
            ROLES,
            json={"name": "auditor", "displayName": "Auditor", "permissions": {"system": {"logs": True}}},
            headers=headers,
        )
        assert created.status_code == 201, created.text
        role = created.json()["data"]
        assert role["isSystem"] is False
        assert role["permissions"] == {"system": {"logs": True}}

        updated = client.put(f"{ROLES}/{role['id']}", json={"description": "Reads logs"}, headers=headers)
        assert updated.status_code == 200
        assert updated.json()["data"]["description"] == "Reads logs"

        assert client.get(f"{ROLES}/{role['id']}", headers=headers).status_code == 200
        assert client.delete(f"{ROLES}/{role['id']}", headers=headers).status_code == 200
        assert client.get(f"{ROLES}/{role['id']}", headers=headers).status_code == 404

    def test_duplicate_role_name_is_conflict(self, api_client) -> None:
        client, service = api_client
        _, admin_token = make_admin(service)
        resp = client.post(ROLES, json={"name": "admin", "displayName": "Again"}, headers=auth_headers(admin_token))
        assert resp.status_code == 409

    def test_system_role_cannot_be_deleted(self, api_client) -> None:
        client, service = api_client
        _, admin_token = make_admin(service)
        role_id = service.store.get_role_by_name("user").id
        resp = client.delete(f"{ROLES}/{role_id}", headers=auth_headers(admin_token))
        assert resp.status_code == 400
        assert resp.json()["message"] == "System roles cannot be deleted"

    def test_roles_require_admin(self, api_client) -> None:
        client, _ = api_client
        token = register_user(client)["tokens"]["accessToken"]
        assert client.get(ROLES, headers=auth_headers(token)).status_code == 401
