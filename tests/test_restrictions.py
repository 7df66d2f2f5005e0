"""
Tests for page restrictions: pattern matching, rule order and the admin API.
"""

import pytest

from content.restrictions import (
    AccessUser,
    RestrictionError,
    check_access_with_restriction,
    check_batch_page_access,
    check_page_access,
    create_restriction,
    get_hidden_nav_routes,
    match_route_pattern,
    update_restriction,
)
from database.models import PageRestriction, UserRole

ANONYMOUS = AccessUser()
CLIENT = AccessUser(username="cal", role="client", is_authenticated=True)
PREPARER = AccessUser(username="ira", role="tax_preparer", is_authenticated=True)


def _rule(**fields):
    fields.setdefault("route_path", "/admin/*")
    fields.setdefault("allow_non_logged_in", False)
    return PageRestriction(**fields)


class TestPatternMatching:

    @pytest.mark.parametrize("route,pattern,expected", [
        ("/admin/users", "/admin/users", True),
        ("/admin/users/1", "/admin/users", False),
        ("/admin/users", "/admin/*", True),
        ("/admin/users/1", "/admin/*", True),
        ("/admin", "/admin/*", False),
        ("/dashboard/tax/settings", "/dashboard/*/settings", True),
        ("/dashboard/tax/profile", "/dashboard/*/settings", False),
        ("/a.b", "/a.*", True),
        ("/axb", "/a.b", False),
    ])
    def test_match(self, route, pattern, expected):
        assert match_route_pattern(route, pattern) is expected


class TestRuleOrder:

    def test_blocked_username_beats_allowed(self):
        rule = _rule(blocked_usernames=["Cal"], allowed_usernames=["cal"], redirect_url="/login")
        result = check_access_with_restriction(rule, CLIENT)
        assert not result.allowed
        assert result.reason == "blocked_username"
        assert result.redirect_url == "/login"

    def test_allowed_username_beats_role_rules(self):
        rule = _rule(allowed_usernames=["cal"], blocked_roles=["client"])
        assert check_access_with_restriction(rule, CLIENT).reason == "allowed_username"

    def test_anonymous(self):
        assert check_access_with_restriction(_rule(), ANONYMOUS).reason == "not_authenticated"
        public = _rule(allow_non_logged_in=True)
        assert check_access_with_restriction(public, ANONYMOUS).reason == "public_access"

    def test_blocked_role(self):
        rule = _rule(blocked_roles=["client"], custom_html_on_block="<p>Preparers only</p>")
        result = check_access_with_restriction(rule, CLIENT)
        assert result.reason == "blocked_role"
        assert result.custom_content == "<p>Preparers only</p>"

    def test_allowed_roles(self):
        rule = _rule(allowed_roles=["tax_preparer", "admin"])
        assert check_access_with_restriction(rule, PREPARER).reason == "allowed_role"
        assert check_access_with_restriction(rule, CLIENT).reason == "no_permission"

    def test_empty_allowed_roles_admits_any_login(self):
        assert check_access_with_restriction(_rule(allowed_roles=[]), CLIENT).reason == "authenticated"


class TestPageAccess:

    def test_unrestricted_route(self, session):
        result = check_page_access(session, "/pricing", ANONYMOUS)
        assert result.allowed
        assert result.reason == "no_restriction"

    def test_highest_priority_rule_wins(self, session):
        create_restriction(session, "/dashboard/*", allowed_roles=["tax_preparer"], priority=1)
        create_restriction(session, "/dashboard/help", allow_non_logged_in=True, priority=10)

        assert check_page_access(session, "/dashboard/help", ANONYMOUS).reason == "public_access"
        assert check_page_access(session, "/dashboard/leads", CLIENT).reason == "no_permission"

    def test_inactive_rules_ignored(self, session):
        create_restriction(session, "/beta", is_active=False)
        assert check_page_access(session, "/beta", ANONYMOUS).reason == "no_restriction"

    def test_lookup_error_denies(self, session, monkeypatch):
        import content.restrictions as restrictions

        def broken(session):
            raise RuntimeError("database unavailable")

        monkeypatch.setattr(restrictions, "_active_restrictions", broken)
        result = check_page_access(session, "/admin/users", CLIENT)
        assert not result.allowed
        assert result.reason == "error"

    def test_batch(self, session):
        create_restriction(session, "/admin/*", allowed_roles=["admin"])
        results = check_batch_page_access(session, ["/admin/users", "/pricing"], CLIENT)
        assert not results["/admin/users"].allowed
        assert results["/pricing"].allowed

    def test_hidden_nav(self, session):
        create_restriction(session, "/admin/*", allowed_roles=["admin"])
        create_restriction(session, "/internal", hide_from_nav=True, allow_non_logged_in=True)
        create_restriction(session, "/help", allow_non_logged_in=True)

        assert sorted(get_hidden_nav_routes(session, CLIENT)) == ["/admin/*", "/internal"]


class TestCrud:

    def test_duplicate_route(self, session):
        create_restriction(session, "/admin/*")
        with pytest.raises(RestrictionError):
            create_restriction(session, "/admin/*")

    def test_unknown_field(self, session):
        with pytest.raises(RestrictionError):
            create_restriction(session, "/x", colour="red")

    def test_update(self, session):
        restriction = create_restriction(session, "/admin/*")
        updated = update_restriction(session, restriction.id, allowed_roles=["admin"], priority=5)
        assert updated.allowed_roles == ["admin"]
        assert updated.priority == 5


class TestRestrictionApi:

    def test_admin_crud_and_check(self, client, session, make_profile, auth_headers):
        admin = make_profile(role=UserRole.ADMIN, username="boss")
        customer = make_profile(role=UserRole.CLIENT, username="cal")
        session.commit()

        created = client.post(
            "/api/admin/restrictions",
            json={"route_path": "/admin/*", "allowed_roles": ["admin"], "redirect_url": "/login"},
            headers=auth_headers(admin),
        )
        assert created.status_code == 201
        restriction_id = created.json()["restriction"]["id"]

        duplicate = client.post(
            "/api/admin/restrictions", json={"route_path": "/admin/*"}, headers=auth_headers(admin)
        )
        assert duplicate.status_code == 409

        anonymous = client.post("/api/restrictions/check", json={"route": "/admin/users"}).json()
        assert anonymous == {
            "allowed": False, "reason": "not_authenticated", "redirect_url": "/login", "custom_content": None,
        }

        as_client = client.post(
            "/api/restrictions/check", json={"route": "/admin/users"}, headers=auth_headers(customer)
        ).json()
        assert as_client["reason"] == "no_permission"

        batch = client.post(
            "/api/restrictions/check",
            json={"routes": ["/admin/users", "/pricing"]},
            headers=auth_headers(admin),
        ).json()
        assert batch["results"]["/admin/users"]["allowed"] is True
        assert batch["results"]["/pricing"]["reason"] == "no_restriction"

        hidden = client.get("/api/restrictions/hidden-nav", headers=auth_headers(customer)).json()
        assert hidden["hidden_routes"] == ["/admin/*"]

        patched = client.patch(
            f"/api/admin/restrictions/{restriction_id}",
            json={"allow_non_logged_in": True},
            headers=auth_headers(admin),
        )
        assert patched.json()["restriction"]["allow_non_logged_in"] is True

        deleted = client.delete(f"/api/admin/restrictions/{restriction_id}", headers=auth_headers(admin))
        assert deleted.json() == {"success": True}
        assert client.get("/api/admin/restrictions", headers=auth_headers(admin)).json()["restrictions"] == []

    def test_check_requires_route(self, client):
        assert client.post("/api/restrictions/check", json={}).status_code == 400

    def test_admin_only(self, client, session, make_profile, auth_headers):
        customer = make_profile(role=UserRole.CLIENT)
        session.commit()
        response = client.post(
            "/api/admin/restrictions", json={"route_path": "/x"}, headers=auth_headers(customer)
        )
        assert response.status_code == 403
