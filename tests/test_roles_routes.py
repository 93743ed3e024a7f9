"""
tests/test_roles_routes.py -- Integration tests for /api/v1/roles and /api/v1/activities.

Uses rbac_client, which provides one signed-in user per seed identity, to
check that each route is guarded by the right (resource, action) pair and
that the resolver's deny messages reach the client intact.
"""

from __future__ import annotations

from rbac.permissions import RESOURCES, default_permissions, full_permissions


def _auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class TestListAndGet:
    def test_any_authenticated_user_can_list(self, rbac_client) -> None:
        client, tokens, _ids, _store = rbac_client
        resp = client.get("/api/v1/roles", headers=_auth(tokens["unassigned"]))
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        names = [r["name"] for r in resp.json()]
        assert names[:4] == ["Administrator", "Asset Manager", "User Manager", "Read Only"]

    def test_list_reports_live_user_counts(self, rbac_client) -> None:
        client, tokens, _ids, _store = rbac_client
        roles = {r["id"]: r for r in client.get("/api/v1/roles", headers=_auth(tokens["read_only"])).json()}
        assert roles[1]["user_count"] >= 1  # admin users count toward Administrator
        assert roles[2]["user_count"] >= 1
        assert roles[3]["user_count"] >= 1
        assert roles[4]["user_count"] >= 1

    def test_get_single_role(self, rbac_client) -> None:
        client, tokens, _ids, _store = rbac_client
        resp = client.get("/api/v1/roles/1", headers=_auth(tokens["read_only"]))
        assert resp.status_code == 200
        assert resp.json()["permissions"] == full_permissions()

    def test_get_missing_role(self, rbac_client) -> None:
        client, tokens, _ids, _store = rbac_client
        resp = client.get("/api/v1/roles/999", headers=_auth(tokens["read_only"]))
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"


class TestCreateRole:
    def test_admin_creates_role_with_partial_matrix(self, rbac_client) -> None:
        client, tokens, _ids, _store = rbac_client
        body = {
            "name": "Auditor",
            "description": "Reports and licences",
            "permissions": {"reports": {"view": True, "edit": True, "add": False}},
        }
        resp = client.post("/api/v1/roles", json=body, headers=_auth(tokens["admin"]))
        assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
        data = resp.json()
        assert data["id"] >= 5
        assert set(data["permissions"]) == set(RESOURCES)
        assert data["permissions"]["reports"] == {"view": True, "edit": True, "add": False, "delete": False}
        assert data["permissions"]["assets"] == default_permissions()["assets"]
        assert data["user_count"] == 0

        fetched = client.get(f"/api/v1/roles/{data['id']}", headers=_auth(tokens["admin"])).json()
        assert fetched == data

    def test_create_is_logged(self, rbac_client) -> None:
        client, tokens, ids, _store = rbac_client
        created = client.post("/api/v1/roles", json={"name": "Logged Role"}, headers=_auth(tokens["admin"])).json()
        entries = client.get("/api/v1/activities?item_type=role", headers=_auth(tokens["admin"])).json()
        match = [e for e in entries if e["item_id"] == created["id"] and e["action"] == "create"]
        assert match, f"No activity for role {created['id']}: {entries}"
        assert match[0]["notes"] == 'Role "Logged Role" created'
        assert match[0]["user_id"] == ids["admin"]

    def test_non_admin_role_denied(self, rbac_client) -> None:
        client, tokens, _ids, _store = rbac_client
        resp = client.post("/api/v1/roles", json={"name": "Sneaky"}, headers=_auth(tokens["user_manager"]))
        assert resp.status_code == 403
        error = resp.json()["error"]
        assert error["code"] == "forbidden"
        assert error["message"] == "Access denied. You don't have permission to add admin."

    def test_unknown_resource_rejected(self, rbac_client) -> None:
        client, tokens, _ids, _store = rbac_client
        body = {"name": "Bad", "permissions": {"printers": {"view": True, "edit": False, "add": False}}}
        resp = client.post("/api/v1/roles", json=body, headers=_auth(tokens["admin"]))
        assert resp.status_code == 422

    def test_non_boolean_grant_rejected(self, rbac_client) -> None:
        client, tokens, _ids, _store = rbac_client
        body = {"name": "Bad", "permissions": {"assets": {"view": "yes", "edit": False, "add": False}}}
        resp = client.post("/api/v1/roles", json=body, headers=_auth(tokens["admin"]))
        assert resp.status_code == 422


class TestUpdateRole:
    def test_rename(self, rbac_client) -> None:
        client, tokens, _ids, _store = rbac_client
        created = client.post("/api/v1/roles", json={"name": "Rename Me"}, headers=_auth(tokens["admin"])).json()
        resp = client.patch(
            f"/api/v1/roles/{created['id']}", json={"name": "Renamed"}, headers=_auth(tokens["admin"])
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["name"] == "Renamed"
        assert resp.json()["permissions"] == created["permissions"]

    def test_partial_matrix_update_rejected(self, rbac_client) -> None:
        client, tokens, _ids, _store = rbac_client
        created = client.post("/api/v1/roles", json={"name": "Partial"}, headers=_auth(tokens["admin"])).json()
        resp = client.patch(
            f"/api/v1/roles/{created['id']}",
            json={"permissions": {"assets": {"view": True, "edit": True, "add": True}}},
            headers=_auth(tokens["admin"]),
        )
        assert resp.status_code == 422

    def test_full_matrix_update_replaces(self, rbac_client) -> None:
        client, tokens, _ids, _store = rbac_client
        created = client.post("/api/v1/roles", json={"name": "Replace"}, headers=_auth(tokens["admin"])).json()
        matrix = default_permissions()
        matrix["networkDiscovery"] = {"view": True, "edit": True, "add": True, "delete": True}
        resp = client.patch(
            f"/api/v1/roles/{created['id']}", json={"permissions": matrix}, headers=_auth(tokens["admin"])
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["permissions"] == matrix

    def test_update_missing_role(self, rbac_client) -> None:
        client, tokens, _ids, _store = rbac_client
        resp = client.patch("/api/v1/roles/999", json={"name": "Ghost"}, headers=_auth(tokens["admin"]))
        assert resp.status_code == 404

    def test_asset_manager_cannot_edit_roles(self, rbac_client) -> None:
        client, tokens, _ids, _store = rbac_client
        resp = client.patch("/api/v1/roles/4", json={"name": "Mine"}, headers=_auth(tokens["asset_manager"]))
        assert resp.status_code == 403


class TestDeleteRole:
    def test_delete_falls_back_to_defaults_for_members(self, rbac_client) -> None:
        """Users still holding a deleted role are checked against the default matrix."""
        from auth.models import User
        from auth.tokens import create_access_token

        client, tokens, _ids, store = rbac_client
        matrix = full_permissions()
        role = client.post(
            "/api/v1/roles",
            json={"name": "Doomed", "permissions": matrix},
            headers=_auth(tokens["admin"]),
        ).json()
        uid = store.create_user(User(username="doomed-member", hashed_password="x", role_id=role["id"]))
        member = _auth(create_access_token(user_id=uid, username="doomed-member", expire_seconds=60))

        assert client.get("/api/v1/users", headers=member).status_code == 200

        resp = client.delete(f"/api/v1/roles/{role['id']}", headers=_auth(tokens["admin"]))
        assert resp.status_code == 204

        me = client.get("/api/v1/auth/me", headers=member).json()
        assert me["role_id"] == role["id"]
        assert me["role_name"] is None
        assert me["permissions"] == default_permissions()
        resp = client.get("/api/v1/users", headers=member)
        assert resp.status_code == 403
        assert "users" in resp.json()["error"]["message"]

    def test_delete_missing_role(self, rbac_client) -> None:
        client, tokens, _ids, _store = rbac_client
        assert client.delete("/api/v1/roles/999", headers=_auth(tokens["admin"])).status_code == 404

    def test_non_admin_cannot_delete(self, rbac_client) -> None:
        client, tokens, _ids, _store = rbac_client
        assert client.delete("/api/v1/roles/4", headers=_auth(tokens["read_only"])).status_code == 403


class TestActivities:
    def test_default_permissions_allow_reading_the_log(self, rbac_client) -> None:
        client, tokens, _ids, _store = rbac_client
        # Default permissions include reports.view, so even unassigned users may read the log.
        assert client.get("/api/v1/activities", headers=_auth(tokens["unassigned"])).status_code == 200

    def test_limit_bounds(self, rbac_client) -> None:
        client, tokens, _ids, _store = rbac_client
        assert client.get("/api/v1/activities?limit=0", headers=_auth(tokens["admin"])).status_code == 422
        resp = client.get("/api/v1/activities?limit=1", headers=_auth(tokens["admin"]))
        assert resp.status_code == 200
        assert len(resp.json()) <= 1
