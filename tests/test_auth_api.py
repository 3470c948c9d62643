"""HTTP tests for /api/v1/auth and /api/v1/health using FastAPI's TestClient."""

import unittest
from datetime import UTC, datetime
from unittest.mock import MagicMock, patch

from fastapi.testclient import TestClient
from pydantic import SecretStr
from sqlalchemy.exc import OperationalError

from app.api.deps import get_clock, get_token_codec
from app.core.config import Settings, get_settings
from app.core.database import get_db
from app.core.roles import Role
from app.core.tokens import TokenKind
from app.main import app
from app.services.session_store import SessionStore
from tests.support import (
    OTHER_SECRET,
    TEST_SECRET,
    FakeClock,
    add_user,
    make_codec,
    make_session_factory,
)

PREFIX = "/api/v1"


class ApiTestCase(unittest.TestCase):
    """Wires the app to an in-memory database, a test codec and test settings."""

    def setUp(self) -> None:
        self.Session = make_session_factory()
        db = self.Session()
        try:
            self.alice_id = add_user(db, "alice", "correct-pw", roles=[Role.USER]).id
            self.admin_id = add_user(db, "root", "admin-password", roles=[Role.ADMIN]).id
        finally:
            db.close()

        self.codec = make_codec()
        self.clock = FakeClock(datetime.now(UTC).replace(microsecond=0))
        self.settings = Settings(
            DATABASE_URL="sqlite://",
            JWT_SECRET=SecretStr(TEST_SECRET),
            REFRESH_COOKIE_SECURE=False,
        )

        def override_get_db():
            db = self.Session()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[get_token_codec] = lambda: self.codec
        app.dependency_overrides[get_settings] = lambda: self.settings
        app.dependency_overrides[get_clock] = lambda: self.clock
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        self.client.close()

    def login(self, username: str = "alice", password: str = "correct-pw"):
        return self.client.post(
            f"{PREFIX}/auth/login", json={"username": username, "password": password}
        )

    def bearer(self, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    def break_database(self) -> None:
        def broken_db():
            db = MagicMock()
            db.query.side_effect = OperationalError("SELECT", {}, Exception("refused"))
            yield db

        app.dependency_overrides[get_db] = broken_db


class TestLogin(ApiTestCase):
    def test_login_returns_pair_and_http_only_cookie(self) -> None:
        response = self.login()
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["token_type"], "bearer")
        self.assertEqual(data["expires_in"], 3600)
        self.assertEqual(data["refresh_expires_in"], 86400)
        claims = self.codec.verify(data["access_token"], TokenKind.ACCESS, self.clock())
        self.assertEqual(claims.subject, self.alice_id)

        set_cookie = response.headers["set-cookie"]
        self.assertIn(f"refresh_token={data['refresh_token']}", set_cookie)
        self.assertIn("HttpOnly", set_cookie)
        self.assertIn("SameSite=lax", set_cookie)

    def test_bad_credentials_are_generic_401(self) -> None:
        unknown = self.login("mallory", "correct-pw")
        wrong = self.login("alice", "wrong-password")
        self.assertEqual(unknown.status_code, 401)
        self.assertEqual(wrong.status_code, 401)
        self.assertEqual(unknown.json(), wrong.json())
        self.assertNotIn("set-cookie", wrong.headers)

    def test_invalid_body_is_422(self) -> None:
        response = self.client.post(f"{PREFIX}/auth/login", json={"username": "alice"})
        self.assertEqual(response.status_code, 422)

    def test_out_of_range_credentials_are_the_same_generic_401(self) -> None:
        baseline = self.login("alice", "wrong-password")
        short_password = self.login("alice", "short")
        long_username = self.login("x" * 300, "correct-pw")
        for response in (short_password, long_username):
            self.assertEqual(response.status_code, 401)
            self.assertEqual(response.json(), baseline.json())
        self.assertNotIn("short", short_password.text)

    def test_store_unavailable_is_503_not_401(self) -> None:
        self.break_database()
        response = self.login()
        self.assertEqual(response.status_code, 503)


class TestRefreshAndLogout(ApiTestCase):
    def test_rotation_scenario(self) -> None:
        first = self.login().json()

        # Cookie from login is used when no body is sent.
        second_response = self.client.post(f"{PREFIX}/auth/refresh")
        self.assertEqual(second_response.status_code, 200)
        second = second_response.json()
        self.assertNotEqual(second["refresh_token"], first["refresh_token"])
        self.assertEqual(self.client.cookies.get("refresh_token"), second["refresh_token"])

        stale = self.client.post(
            f"{PREFIX}/auth/refresh", json={"refresh_token": first["refresh_token"]}
        )
        self.assertEqual(stale.status_code, 401)

        logout = self.client.post(
            f"{PREFIX}/auth/logout", json={"refresh_token": second["refresh_token"]}
        )
        self.assertEqual(logout.status_code, 200)
        self.assertEqual(logout.json(), {"status": "ok"})

        after_logout = self.client.post(
            f"{PREFIX}/auth/refresh", json={"refresh_token": second["refresh_token"]}
        )
        self.assertEqual(after_logout.status_code, 401)

    def test_refresh_without_token_is_401(self) -> None:
        response = self.client.post(f"{PREFIX}/auth/refresh")
        self.assertEqual(response.status_code, 401)

    def test_refresh_with_access_token_is_401(self) -> None:
        tokens = self.login().json()
        response = self.client.post(
            f"{PREFIX}/auth/refresh", json={"refresh_token": tokens["access_token"]}
        )
        self.assertEqual(response.status_code, 401)

    def test_expired_refresh_is_401(self) -> None:
        tokens = self.login().json()
        self.clock.advance(days=1)
        response = self.client.post(
            f"{PREFIX}/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
        )
        self.assertEqual(response.status_code, 401)

    def test_logout_via_cookie_clears_cookie(self) -> None:
        self.login()
        response = self.client.post(f"{PREFIX}/auth/logout")
        self.assertEqual(response.status_code, 200)
        self.assertIn('refresh_token=""', response.headers["set-cookie"])
        self.assertEqual(self.client.post(f"{PREFIX}/auth/refresh").status_code, 401)

    def test_logout_always_succeeds(self) -> None:
        self.assertEqual(self.client.post(f"{PREFIX}/auth/logout").status_code, 200)
        response = self.client.post(
            f"{PREFIX}/auth/logout", json={"refresh_token": "garbage"}
        )
        self.assertEqual(response.status_code, 200)

    def test_store_unavailable_during_refresh_is_503(self) -> None:
        tokens = self.login().json()
        self.break_database()
        response = self.client.post(
            f"{PREFIX}/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
        )
        self.assertEqual(response.status_code, 503)

    def test_store_unavailable_during_logout_is_503(self) -> None:
        tokens = self.login().json()
        self.break_database()
        response = self.client.post(
            f"{PREFIX}/auth/logout", json={"refresh_token": tokens["refresh_token"]}
        )
        self.assertEqual(response.status_code, 503)

    def test_logout_all_revokes_every_session(self) -> None:
        first = self.login().json()
        second = self.login().json()
        response = self.client.post(
            f"{PREFIX}/auth/logout-all", headers=self.bearer(second["access_token"])
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["sessions_revoked"], 2)
        for tokens in (first, second):
            refreshed = self.client.post(
                f"{PREFIX}/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
            )
            self.assertEqual(refreshed.status_code, 401)


class TestRequestGate(ApiTestCase):
    def test_me_with_valid_access_token(self) -> None:
        tokens = self.login().json()
        response = self.client.get(f"{PREFIX}/auth/me", headers=self.bearer(tokens["access_token"]))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"id": self.alice_id, "roles": ["user"]})

    def test_missing_header_is_401(self) -> None:
        response = self.client.get(f"{PREFIX}/auth/me")
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.headers["www-authenticate"], "Bearer")

    def test_non_bearer_scheme_is_401(self) -> None:
        response = self.client.get(
            f"{PREFIX}/auth/me", headers={"Authorization": "Basic YWxpY2U6cHc="}
        )
        self.assertEqual(response.status_code, 401)

    def test_expired_and_malformed_look_the_same(self) -> None:
        tokens = self.login().json()
        self.clock.advance(hours=1)
        expired = self.client.get(f"{PREFIX}/auth/me", headers=self.bearer(tokens["access_token"]))
        malformed = self.client.get(f"{PREFIX}/auth/me", headers=self.bearer("not-a-jwt"))
        self.assertEqual(expired.status_code, 401)
        self.assertEqual(malformed.status_code, 401)
        self.assertEqual(expired.json(), malformed.json())

    def test_refresh_token_is_not_accepted_as_bearer(self) -> None:
        tokens = self.login().json()
        response = self.client.get(f"{PREFIX}/auth/me", headers=self.bearer(tokens["refresh_token"]))
        self.assertEqual(response.status_code, 401)

    def test_forged_admin_token_is_401_not_403(self) -> None:
        forged = make_codec(secret=OTHER_SECRET).issue(
            self.alice_id, [Role.ADMIN], TokenKind.ACCESS, self.clock()
        )
        response = self.client.get(f"{PREFIX}/auth/users", headers=self.bearer(forged.token))
        self.assertEqual(response.status_code, 401)


class TestAuthorization(ApiTestCase):
    def test_admin_lists_users(self) -> None:
        tokens = self.login("root", "admin-password").json()
        response = self.client.get(f"{PREFIX}/auth/users", headers=self.bearer(tokens["access_token"]))
        self.assertEqual(response.status_code, 200)
        users = response.json()["users"]
        self.assertEqual([u["username"] for u in users], ["alice", "root"])
        self.assertEqual(users[1]["roles"], ["admin"])
        self.assertNotIn("password_hash", users[0])

    def test_non_admin_is_403(self) -> None:
        tokens = self.login().json()
        response = self.client.get(f"{PREFIX}/auth/users", headers=self.bearer(tokens["access_token"]))
        self.assertEqual(response.status_code, 403)


class TestSignup(ApiTestCase):
    def test_signup_creates_user_and_logs_in(self) -> None:
        response = self.client.post(
            f"{PREFIX}/auth/signup", json={"username": "carol", "password": "another-pw"}
        )
        self.assertEqual(response.status_code, 201)
        self.assertIn("refresh_token", response.headers["set-cookie"])
        self.assertEqual(self.login("carol", "another-pw").status_code, 200)

    def test_duplicate_username_is_409(self) -> None:
        response = self.client.post(
            f"{PREFIX}/auth/signup", json={"username": "alice", "password": "another-pw"}
        )
        self.assertEqual(response.status_code, 409)

    def test_short_password_is_rejected_at_signup(self) -> None:
        response = self.client.post(
            f"{PREFIX}/auth/signup", json={"username": "carol", "password": "short"}
        )
        self.assertEqual(response.status_code, 422)

    def test_failed_signup_can_be_retried(self) -> None:
        failure = OperationalError("INSERT", {}, Exception("disk full"))
        body = {"username": "carol", "password": "another-pw"}
        with patch.object(SessionStore, "add_pending", side_effect=failure):
            response = self.client.post(f"{PREFIX}/auth/signup", json=body)
        self.assertEqual(response.status_code, 503)
        self.assertEqual(self.client.post(f"{PREFIX}/auth/signup", json=body).status_code, 201)

    def test_signup_disabled_is_403(self) -> None:
        self.settings = Settings(
            DATABASE_URL="sqlite://",
            JWT_SECRET=SecretStr(TEST_SECRET),
            REFRESH_COOKIE_SECURE=False,
            SIGNUP_ENABLED=False,
        )
        response = self.client.post(
            f"{PREFIX}/auth/signup", json={"username": "carol", "password": "another-pw"}
        )
        self.assertEqual(response.status_code, 403)


class TestHealth(ApiTestCase):
    def test_health_reports_database(self) -> None:
        response = self.client.get(f"{PREFIX}/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["database"], "connected")
        self.assertEqual(response.json()["status"], "ok")


if __name__ == "__main__":
    unittest.main()
