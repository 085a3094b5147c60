"""
tests/test_auth_routes.py -- Login, /me, password change and permission checks over HTTP.

Uses the module-scoped api fixture: one app, one in-memory database, the
bootstrap admin plus "prov" (provisioner) and "ro" (read_only). Tests that
mutate accounts seed their own users so ordering does not matter.
"""

from __future__ import annotations

import json

from core.models import MODULE_REGISTRY


def _login(api, username: str, password: str):
    return api.client.post("/api/v1/auth/login", json={"username": username, "password": password})


def _activity(api, action: str) -> list[dict]:
    resp = api.client.get(
        "/api/v1/change-logs",
        params={"table_names": "user_activity", "action": action},
        headers=api.headers("admin"),
    )
    assert resp.status_code == 200
    return resp.json()


class TestHealth:
    def test_health_needs_no_auth(self, api):
        resp = api.client.get("/api/v1/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "healthy"
        assert body["components"] == {"app": "ok", "database": "ok"}


class TestLogin:
    def test_success_returns_token_and_permissions(self, api):
        resp = _login(api, "admin", api.admin_password)
        assert resp.status_code == 200
        assert resp.headers["Cache-Control"] == "no-store"

        body = resp.json()
        assert body["token_type"] == "bearer"
        assert body["expires_in"] == 86400
        assert body["user"]["username"] == "admin"
        assert body["user"]["role"] == "administrator"
        assert body["user"]["full_name"] == "System Administrator"
        assert body["permissions"]["user_management"] == {
            "can_view": True, "can_create": True, "can_edit": True, "can_delete": True,
        }
        assert set(MODULE_REGISTRY) <= set(body["visibility"])

    def test_issued_token_is_accepted(self, api):
        token = _login(api, "prov", api.user_password).json()["token"]
        resp = api.client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200
        assert resp.json()["user"]["username"] == "prov"

    def test_wrong_password_and_unknown_user_look_the_same(self, api):
        wrong = _login(api, "admin", "not-the-password")
        unknown = _login(api, "nobody", "whatever123")
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()
        assert wrong.json()["error"]["code"] == "bad_credentials"

    def test_inactive_user_cannot_log_in(self, api):
        api.seed_user("sleeper", "read_only", status="inactive")
        assert _login(api, "sleeper", api.user_password).status_code == 401

    def test_failed_login_is_recorded_anonymously(self, api):
        _login(api, "intruder", "guess12345")
        entries = [e for e in _activity(api, "login_failed") if "intruder" in (e["new_values"] or "")]
        assert entries
        entry = entries[0]
        assert entry["user_id"] is None
        assert entry["record_id"] == "anonymous"
        assert entry["changes_summary"] == "User login_failed"
        assert json.loads(entry["new_values"])["username"] == "intruder"

    def test_successful_login_is_recorded_and_stamped(self, api):
        user = api.seed_user("stamper", "read_only")
        assert _login(api, "stamper", api.user_password).status_code == 200

        entries = [e for e in _activity(api, "login") if e["user_id"] == user.id]
        assert len(entries) == 1
        assert entries[0]["record_id"] == str(user.id)
        assert entries[0]["ip_address"] == "testclient"

        profile = api.client.get(f"/api/v1/users/{user.id}", headers=api.headers("admin")).json()
        assert profile["last_login"] is not None

    def test_empty_username_is_422(self, api):
        resp = api.client.post("/api/v1/auth/login", json={"username": "", "password": "x"})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"


class TestMe:
    def test_requires_token(self, api):
        resp = api.client.get("/api/v1/auth/me")
        assert resp.status_code == 401

    def test_returns_claims_and_role_permissions(self, api):
        resp = api.client.get("/api/v1/auth/me", headers=api.headers("ro"))
        assert resp.status_code == 200
        body = resp.json()
        assert body["user"] == {"id": api.ids["ro"], "username": "ro", "full_name": "Ro User", "role": "read_only"}
        assert body["permissions"]["carriers"]["can_view"] is True
        assert body["permissions"]["carriers"]["can_create"] is False
        assert "cnx_colocation" not in body["permissions"]
        assert body["visibility"]["cnx_colocation"] is True

    def test_deactivated_user_with_live_token(self, api):
        """The token still verifies; permission resolution reports the user gone."""
        user = api.seed_user("leaver", "provisioner")
        resp = api.client.patch(
            f"/api/v1/users/{user.id}", json={"status": "inactive"}, headers=api.headers("admin")
        )
        assert resp.status_code == 200

        me = api.client.get("/api/v1/auth/me", headers=api.headers("leaver"))
        assert me.status_code == 404
        assert me.json()["error"]["code"] == "user_not_found"


class TestChangePassword:
    URL = "/api/v1/auth/change-password"

    def test_wrong_current_password(self, api):
        api.seed_user("forgetful", "read_only")
        resp = api.client.put(
            self.URL,
            json={"current_password": "not-mine-1", "new_password": "brandnew123"},
            headers=api.headers("forgetful"),
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "bad_credentials"

    def test_new_password_too_short(self, api):
        resp = api.client.put(
            self.URL,
            json={"current_password": api.user_password, "new_password": "short"},
            headers=api.headers("ro"),
        )
        assert resp.status_code == 422

    def test_change_takes_effect_and_is_audited(self, api):
        user = api.seed_user("changer", "read_only")
        resp = api.client.put(
            self.URL,
            json={"current_password": api.user_password, "new_password": "brandnew123"},
            headers=api.headers("changer"),
        )
        assert resp.status_code == 200

        assert _login(api, "changer", "brandnew123").status_code == 200
        assert _login(api, "changer", api.user_password).status_code == 401

        logs = api.client.get(
            "/api/v1/change-logs",
            params={"table_names": "users", "user_id": user.id},
            headers=api.headers("admin"),
        ).json()
        assert len(logs) == 1
        assert logs[0]["record_id"] == str(user.id)
        assert json.loads(logs[0]["new_values"]) == {"password_changed": True}
        assert "$2b$" not in (logs[0]["new_values"] or "")

    def test_surrounding_whitespace_is_part_of_the_password(self, api):
        api.seed_user("spacey", "read_only")
        resp = api.client.put(
            self.URL,
            json={"current_password": api.user_password, "new_password": "  secretpw1  "},
            headers=api.headers("spacey"),
        )
        assert resp.status_code == 200

        assert _login(api, "spacey", "  secretpw1  ").status_code == 200
        assert _login(api, "spacey", "secretpw1").status_code == 401

    def test_requires_token(self, api):
        resp = api.client.put(self.URL, json={"current_password": "x", "new_password": "brandnew123"})
        assert resp.status_code == 401


class TestPermissionCheck:
    URL = "/api/v1/permissions/check"

    def test_allowed_and_denied(self, api):
        allowed = api.client.get(self.URL, params={"module": "carriers", "action": "view"}, headers=api.headers("ro"))
        denied = api.client.get(self.URL, params={"module": "carriers", "action": "delete"}, headers=api.headers("ro"))
        assert allowed.json() == {"module": "carriers", "action": "view", "allowed": True}
        assert denied.json()["allowed"] is False

    def test_module_without_row_is_denied(self, api):
        resp = api.client.get(
            self.URL, params={"module": "cnx_colocation", "action": "view"}, headers=api.headers("prov")
        )
        assert resp.json()["allowed"] is False

    def test_unknown_action_is_422(self, api):
        resp = api.client.get(self.URL, params={"module": "carriers", "action": "export"}, headers=api.headers("ro"))
        assert resp.status_code == 422

    def test_requires_token(self, api):
        assert api.client.get(self.URL, params={"module": "carriers", "action": "view"}).status_code == 401
