"""
tests/test_web_routes.py -- Integration tests for the server-rendered pages.

Uses web_client (follow_redirects=False) so redirect targets can be asserted.

Coverage:
  - Form login: success sets the cookie and honours a safe callbackUrl
  - Form login: failure goes back to /login with a whitelisted error
  - /login while signed in skips the form
  - Logout clears the cookie
  - Forgot/reset password pages, including dead links and policy errors
  - Dashboards: role and tenant checks render a 403 page
"""

from __future__ import annotations

from urllib.parse import parse_qs, urlparse

from auth.reset import RESET_ACKNOWLEDGEMENT


def _query(location: str) -> dict[str, list[str]]:
    return parse_qs(urlparse(location).query)


class TestFormLogin:
    def test_success_redirects_to_callback(self, web_client) -> None:
        resp = web_client.client.post(
            "/login",
            data={
                "email": "owner@sunrise-tours.com",
                "password": web_client.owner_password,
                "callbackUrl": "/agency/dashboard",
            },
        )
        assert resp.status_code == 302
        assert resp.headers["location"] == "/agency/dashboard"
        assert "access_token=" in resp.headers["set-cookie"]

    def test_absolute_callback_is_replaced_by_default(self, web_client) -> None:
        resp = web_client.client.post(
            "/login",
            data={
                "email": "owner@sunrise-tours.com",
                "password": web_client.owner_password,
                "callbackUrl": "https://attacker.com/phish",
            },
        )
        assert resp.status_code == 302
        assert resp.headers["location"] == "/admin/dashboard/profile"

    def test_bad_password_goes_back_with_error(self, web_client) -> None:
        resp = web_client.client.post(
            "/login",
            data={"email": "owner@sunrise-tours.com", "password": "Nope1234!", "callbackUrl": "/agency/dashboard"},
        )
        assert resp.status_code == 302
        query = _query(resp.headers["location"])
        assert query["error"] == ["bad_credentials"]
        assert query["callbackUrl"] == ["/agency/dashboard"]
        assert "set-cookie" not in resp.headers

    def test_error_message_comes_from_whitelist(self, web_client) -> None:
        resp = web_client.client.get("/login", params={"error": "bad_credentials"})
        assert "Invalid email or password." in resp.text

        crafted = web_client.client.get("/login", params={"error": "<script>alert(1)</script>"})
        assert crafted.status_code == 200
        assert "<script>alert(1)</script>" not in crafted.text

    def test_signed_in_user_skips_login_form(self, web_client) -> None:
        resp = web_client.client.get(
            "/login",
            params={"callbackUrl": "/staff/dashboard"},
            cookies={"access_token": web_client.token(web_client.staff)},
        )
        assert resp.status_code == 302
        assert resp.headers["location"] == "/staff/dashboard"

    def test_logout_clears_cookie(self, web_client) -> None:
        resp = web_client.client.post("/logout", cookies={"access_token": web_client.token(web_client.owner)})
        assert resp.status_code == 302
        assert resp.headers["location"].startswith("/login")
        assert "access_token=" in resp.headers["set-cookie"]


class TestResetPages:
    def test_forgot_password_shows_acknowledgement(self, web_client) -> None:
        for email in ("staff@sunrise-tours.com", "ghost@nowhere.com"):
            resp = web_client.client.post("/forgot-password", data={"email": email})
            assert resp.status_code == 200
            assert RESET_ACKNOWLEDGEMENT in resp.text

    def test_reset_page_with_dead_link(self, web_client) -> None:
        resp = web_client.client.get("/reset-password", params={"token": "0" * 64})
        assert resp.status_code == 200
        assert "Invalid or expired reset token." in resp.text
        assert 'name="password"' not in resp.text
        assert resp.headers["cache-control"] == "no-store"

    def test_reset_via_form(self, web_client) -> None:
        web_client.mailer.outbox.clear()
        web_client.client.post("/forgot-password", data={"email": "owner@bluelagoon.com"})
        token = _query(web_client.mailer.outbox[0].reset_url)["token"][0]

        page = web_client.client.get("/reset-password", params={"token": token})
        assert 'name="password"' in page.text

        weak = web_client.client.post(
            "/reset-password", data={"token": token, "password": "weakpass", "confirm_password": "weakpass"}
        )
        assert weak.status_code == 400
        assert "Password must contain at least one uppercase letter" in weak.text

        mismatch = web_client.client.post(
            "/reset-password", data={"token": token, "password": "Lagoon#99", "confirm_password": "Lagoon#98"}
        )
        assert mismatch.status_code == 400
        assert "Passwords do not match." in mismatch.text

        done = web_client.client.post(
            "/reset-password", data={"token": token, "password": "Lagoon#99", "confirm_password": "Lagoon#99"}
        )
        assert done.status_code == 303
        assert done.headers["location"] == "/login?notice=password_reset"

        reused = web_client.client.post(
            "/reset-password", data={"token": token, "password": "Lagoon#77", "confirm_password": "Lagoon#77"}
        )
        assert reused.status_code == 400
        assert "Invalid or expired reset token." in reused.text


class TestDashboards:
    def test_owner_sees_own_team(self, web_client) -> None:
        resp = web_client.client.get("/agency/dashboard", cookies={"access_token": web_client.token(web_client.owner)})
        assert resp.status_code == 200
        assert "staff@sunrise-tours.com" in resp.text
        assert "owner@bluelagoon.com" not in resp.text

    def test_staff_dashboard_for_staff(self, web_client) -> None:
        resp = web_client.client.get("/staff/dashboard", cookies={"access_token": web_client.token(web_client.staff)})
        assert resp.status_code == 200

    def test_owner_is_not_staff(self, web_client) -> None:
        resp = web_client.client.get("/staff/dashboard", cookies={"access_token": web_client.token(web_client.owner)})
        assert resp.status_code == 403

    def test_admin_cannot_open_super_admin_dashboard(self, web_client) -> None:
        resp = web_client.client.get(
            "/super-admin/dashboard", cookies={"access_token": web_client.token(web_client.admin)}
        )
        assert resp.status_code == 403
        assert "Access denied." in resp.text

    def test_super_admin_dashboard(self, web_client) -> None:
        resp = web_client.client.get(
            "/super-admin/dashboard", cookies={"access_token": web_client.token(web_client.super_admin)}
        )
        assert resp.status_code == 200

    def test_profile_for_any_role(self, web_client) -> None:
        for user in (web_client.staff, web_client.owner, web_client.admin):
            resp = web_client.client.get("/admin/dashboard/profile", cookies={"access_token": web_client.token(user)})
            assert resp.status_code == 200
            assert user.email in resp.text


def test_feedback_page_renders_feedback_template(web_client) -> None:
    resp = web_client.client.get("/feedback")
    assert resp.status_code == 200
    assert "<h1>Feedback</h1>" in resp.text
