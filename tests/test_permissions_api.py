"""
Permission management HTTP API.
"""
import pytest

from tests.conftest import auth


class TestPublicEndpoints:

    @pytest.mark.asyncio
    async def test_root(self, client):
        response = await client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "online"

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.json() == {"status": "healthy"}


class TestCatalog:

    @pytest.mark.asyncio
    async def test_requires_authentication(self, client):
        response = await client.get("/permissions/catalog")
        assert response.status_code == 401
        assert response.json() == {"success": False, "message": "Authentication required"}

    @pytest.mark.asyncio
    async def test_grouped_by_category(self, client):
        response = await client.get("/permissions/catalog", headers=auth("student-1"))
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        categories = body["data"]["categories"]
        assert [c["category"] for c in categories] == ["IPR Permissions", "Research Permissions"]
        assert categories[0]["permissions"][0]["key"] == "ipr_file_new"

    @pytest.mark.asyncio
    async def test_inactive_module_hidden(self, client):
        response = await client.patch("/modules/research", json={"is_active": False}, headers=auth("admin-1"))
        assert response.status_code == 200

        response = await client.get("/permissions/catalog", headers=auth("staff-7"))
        assert [c["module"] for c in response.json()["data"]["categories"]] == ["ipr"]


class TestUserPermissions:

    @pytest.mark.asyncio
    async def test_me_shows_defaults(self, client):
        response = await client.get("/permissions/me", headers=auth("faculty-1"))
        data = response.json()["data"]
        assert data["role"] == "faculty"
        assert data["defaults"] == ["ipr_file_new", "research_file_new"]
        assert data["granted"] == []
        assert data["effective"] == ["ipr_file_new", "research_file_new"]

    @pytest.mark.asyncio
    async def test_grants_included_in_effective(self, client):
        await client.post(
            "/permissions/grant",
            json={"user_id": "faculty-1", "keys": ["ipr_review"]},
            headers=auth("admin-1"),
        )
        response = await client.get("/permissions/me", headers=auth("faculty-1"))
        data = response.json()["data"]
        assert [g["permission_key"] for g in data["granted"]] == ["ipr_review"]
        assert data["granted"][0]["granted_by_id"] == "admin-1"
        assert data["effective"] == ["ipr_file_new", "ipr_review", "research_file_new"]

    @pytest.mark.asyncio
    async def test_self_view_allowed(self, client):
        response = await client.get("/permissions/users/staff-7", headers=auth("staff-7"))
        assert response.status_code == 200
        assert response.json()["data"]["effective"] == []

    @pytest.mark.asyncio
    async def test_other_user_view_forbidden(self, client):
        response = await client.get("/permissions/users/staff-7", headers=auth("faculty-1"))
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_admin_lists_users_with_permissions(self, client):
        headers = auth("admin-1")
        await client.post("/permissions/grant", json={"user_id": "staff-7", "keys": ["ipr_review"]}, headers=headers)

        response = await client.get("/permissions/users", headers=headers)
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["total"] == 6
        assert data["pages"] == 1
        by_id = {item["user_id"]: item for item in data["items"]}
        assert set(by_id) == {"admin-1", "admin-2", "staff-7", "faculty-1", "student-1", "inactive-1"}
        assert by_id["staff-7"]["email"] == "staff7@example.edu"
        assert [g["permission_key"] for g in by_id["staff-7"]["granted"]] == ["ipr_review"]
        assert by_id["staff-7"]["effective"] == ["ipr_review"]
        assert by_id["faculty-1"]["effective"] == ["ipr_file_new", "research_file_new"]
        assert by_id["inactive-1"]["is_active"] is False

    @pytest.mark.asyncio
    async def test_user_list_filters_by_role_and_paginates(self, client):
        headers = auth("admin-1")
        response = await client.get("/permissions/users", params={"role": "staff"}, headers=headers)
        data = response.json()["data"]
        assert data["total"] == 2
        assert {item["user_id"] for item in data["items"]} == {"staff-7", "inactive-1"}

        response = await client.get("/permissions/users", params={"page": 2, "page_size": 4}, headers=headers)
        data = response.json()["data"]
        assert data["total"] == 6
        assert data["pages"] == 2
        assert len(data["items"]) == 2

    @pytest.mark.asyncio
    async def test_user_list_admin_only(self, client):
        assert (await client.get("/permissions/users", headers=auth("staff-7"))).status_code == 403
        assert (await client.get("/permissions/users")).status_code == 401

    @pytest.mark.asyncio
    async def test_admin_view_unknown_user(self, client):
        response = await client.get("/permissions/users/nobody", headers=auth("admin-1"))
        assert response.status_code == 404


class TestCheck:

    @pytest.mark.asyncio
    async def test_any_and_all(self, client):
        headers = auth("student-1")
        response = await client.post("/permissions/check", json={"keys": ["ipr_file_new", "ipr_review"]}, headers=headers)
        assert response.json()["data"] == {"has_permission": True}

        response = await client.post(
            "/permissions/check",
            json={"keys": ["ipr_file_new", "ipr_review"], "policy": "ALL"},
            headers=headers,
        )
        assert response.json()["data"] == {"has_permission": False}

    @pytest.mark.asyncio
    async def test_unknown_key(self, client):
        response = await client.post("/permissions/check", json={"keys": ["bogus"]}, headers=auth("student-1"))
        assert response.status_code == 400
        assert response.json()["details"] == {"unknown_keys": ["bogus"]}

    @pytest.mark.asyncio
    async def test_empty_key_list_rejected(self, client):
        response = await client.post("/permissions/check", json={"keys": []}, headers=auth("student-1"))
        assert response.status_code == 400


class TestMutations:

    @pytest.mark.asyncio
    async def test_grant(self, client):
        response = await client.post(
            "/permissions/grant",
            json={"user_id": "staff-7", "keys": ["ipr_review", "ipr_approve"]},
            headers=auth("admin-1"),
        )
        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "2 permissions granted successfully"
        assert body["data"]["added"] == ["ipr_approve", "ipr_review"]
        assert body["data"]["audit_id"]

    @pytest.mark.asyncio
    async def test_grant_by_non_admin(self, client):
        response = await client.post(
            "/permissions/grant",
            json={"user_id": "staff-7", "keys": ["ipr_approve"]},
            headers=auth("staff-7"),
        )
        assert response.status_code == 403
        assert response.json()["message"] == "Admin privileges required"

    @pytest.mark.asyncio
    async def test_grant_unknown_key_names_it(self, client):
        response = await client.post(
            "/permissions/grant",
            json={"user_id": "staff-7", "keys": ["ipr_review", "ipr_reveiw"]},
            headers=auth("admin-1"),
        )
        assert response.status_code == 400
        assert response.json()["details"] == {"unknown_keys": ["ipr_reveiw"]}

        response = await client.get("/permissions/users/staff-7", headers=auth("admin-1"))
        assert response.json()["data"]["granted"] == []

    @pytest.mark.asyncio
    async def test_grant_unknown_user(self, client):
        response = await client.post(
            "/permissions/grant",
            json={"user_id": "nobody", "keys": ["ipr_review"]},
            headers=auth("admin-1"),
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_missing_user_id(self, client):
        response = await client.post("/permissions/grant", json={"keys": ["ipr_review"]}, headers=auth("admin-1"))
        assert response.status_code == 400
        assert "user_id" in response.json()

    @pytest.mark.asyncio
    async def test_revoke(self, client):
        headers = auth("admin-1")
        await client.post("/permissions/grant", json={"user_id": "staff-7", "keys": ["ipr_review"]}, headers=headers)
        response = await client.post(
            "/permissions/revoke",
            json={"user_id": "staff-7", "keys": ["ipr_review", "ipr_approve"]},
            headers=headers,
        )
        assert response.status_code == 200
        assert response.json()["message"] == "1 permissions revoked successfully"
        assert response.json()["data"]["removed"] == ["ipr_review"]

    @pytest.mark.asyncio
    async def test_replace(self, client):
        headers = auth("admin-1")
        await client.post("/permissions/grant", json={"user_id": "staff-7", "keys": ["ipr_review"]}, headers=headers)
        response = await client.put(
            "/permissions/replace",
            json={"user_id": "staff-7", "keys": ["ipr_approve", "research_review"]},
            headers=headers,
        )
        data = response.json()["data"]
        assert data["count"] == 2
        assert data["added"] == ["ipr_approve", "research_review"]
        assert data["removed"] == ["ipr_review"]

        response = await client.get("/permissions/users/staff-7", headers=headers)
        assert response.json()["data"]["effective"] == ["ipr_approve", "research_review"]


class TestAuditLogs:

    @pytest.mark.asyncio
    async def test_lists_records_for_target(self, client):
        headers = auth("admin-1")
        await client.post("/permissions/grant", json={"user_id": "staff-7", "keys": ["ipr_review"]}, headers=headers)
        await client.post("/permissions/revoke", json={"user_id": "staff-7", "keys": ["ipr_review"]}, headers=headers)

        response = await client.get("/permissions/audit-logs", params={"target_user_id": "staff-7"}, headers=headers)
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["total"] == 2
        assert data["pages"] == 1
        assert [item["action"] for item in data["items"]] == ["GRANT", "REVOKE"]
        assert data["items"][0]["affected_keys"] == ["ipr_review"]

    @pytest.mark.asyncio
    async def test_pagination(self, client):
        headers = auth("admin-1")
        for key in ("ipr_review", "ipr_approve", "research_review"):
            await client.post("/permissions/grant", json={"user_id": "staff-7", "keys": [key]}, headers=headers)

        response = await client.get(
            "/permissions/audit-logs",
            params={"actor_id": "admin-1", "page": 2, "page_size": 2},
            headers=headers,
        )
        data = response.json()["data"]
        assert data["total"] == 3
        assert data["pages"] == 2
        assert len(data["items"]) == 1

    @pytest.mark.asyncio
    async def test_requires_a_filter(self, client):
        response = await client.get("/permissions/audit-logs", headers=auth("admin-1"))
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_admin_only(self, client):
        response = await client.get(
            "/permissions/audit-logs", params={"target_user_id": "staff-7"}, headers=auth("staff-7")
        )
        assert response.status_code == 403
