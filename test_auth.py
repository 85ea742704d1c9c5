"""
Tests for authentication and permission checks on the message endpoints.

Tests cover:
- Token decoding (valid, expired, bad signature, missing claims, non-UUID subject)
- Token lookup order (cookie before Authorization header)
- 401 on every message route before any database access
- 403 when the authorization service denies a permission
- Standard error body for authorization and unexpected failures
"""

import uuid
from datetime import datetime, timedelta, timezone

import httpx
import jwt
import pytest
from fastapi.testclient import TestClient

from conftest import TEST_JWT_SECRET, auth_headers, make_token
from message_service.api_errors import Unauthorized
from message_service.auth import decode_access_token
from message_service.authorization import (
    Authorization,
    DenyAllAuthorization,
    HttpAuthorization,
    Permission,
    get_authorization,
)
from message_service.config import settings
from message_service.main import app
from message_service.storage import MESSAGES_COLLECTION


USER = uuid.uuid4()


@pytest.fixture(scope="function")
def client(db):
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


class RecordingAuthorization(Authorization):
    """Grants only the listed permissions and records every check."""

    def __init__(self, *granted: Permission):
        self.granted = set(granted)
        self.calls = []

    def check(self, actor, permission, resource):
        self.calls.append((actor, permission, resource))
        return permission in self.granted


def use_authorization(authz: Authorization) -> Authorization:
    app.dependency_overrides[get_authorization] = lambda: authz
    return authz


def create_message(client, channel_id, user_id=USER):
    response = client.post(
        "/messages",
        json={"channel_id": str(channel_id), "content": "hi"},
        headers=auth_headers(user_id),
    )
    assert response.status_code == 201
    return response.json()


# ---------------------------------------------------------------------------
# Unit Tests: token decoding
# ---------------------------------------------------------------------------

class TestDecodeAccessToken:
    def test_valid_token(self):
        identity = decode_access_token(make_token(USER), TEST_JWT_SECRET)
        assert identity.user_id == USER

    def test_expired_token(self):
        token = make_token(USER, expires_in=timedelta(seconds=-30))
        with pytest.raises(Unauthorized):
            decode_access_token(token, TEST_JWT_SECRET)

    def test_bad_signature(self):
        token = make_token(USER, secret="some-other-secret")
        with pytest.raises(Unauthorized):
            decode_access_token(token, TEST_JWT_SECRET)

    def test_missing_exp(self):
        token = jwt.encode({"sub": str(USER)}, TEST_JWT_SECRET, algorithm="HS256")
        with pytest.raises(Unauthorized):
            decode_access_token(token, TEST_JWT_SECRET)

    def test_missing_sub(self):
        exp = datetime.now(timezone.utc) + timedelta(minutes=5)
        token = jwt.encode({"exp": exp}, TEST_JWT_SECRET, algorithm="HS256")
        with pytest.raises(Unauthorized):
            decode_access_token(token, TEST_JWT_SECRET)

    def test_subject_not_uuid(self):
        exp = datetime.now(timezone.utc) + timedelta(minutes=5)
        token = jwt.encode({"sub": "alice", "exp": exp}, TEST_JWT_SECRET, algorithm="HS256")
        with pytest.raises(Unauthorized):
            decode_access_token(token, TEST_JWT_SECRET)

    def test_garbage(self):
        with pytest.raises(Unauthorized):
            decode_access_token("not.a.jwt", TEST_JWT_SECRET)


# ---------------------------------------------------------------------------
# Integration Tests: authentication on routes
# ---------------------------------------------------------------------------

class TestAuthentication:
    """Every message route requires a valid access token."""

    @pytest.mark.parametrize("method,path", [
        ("get", "/messages/{id}"),
        ("put", "/messages/{id}"),
        ("delete", "/messages/{id}"),
        ("post", "/messages/{id}/pin"),
        ("get", "/channels/{id}/messages"),
        ("get", "/channels/{id}/messages/pinned"),
        ("get", "/channels/{id}/messages/search?q=x"),
    ])
    def test_missing_token_returns_401(self, client, method, path):
        kwargs = {"json": {"content": "x"}} if method == "put" else {}
        response = client.request(method.upper(), path.format(id=uuid.uuid4()), **kwargs)

        assert response.status_code == 401
        assert response.json()["status"] == 401

    def test_create_without_token_stores_nothing(self, client, db):
        response = client.post("/messages", json={"channel_id": str(uuid.uuid4()), "content": "hi"})

        assert response.status_code == 401
        assert db[MESSAGES_COLLECTION].count_documents({}) == 0

    def test_expired_token_returns_401(self, client):
        token = make_token(USER, expires_in=timedelta(seconds=-30))
        response = client.get(
            f"/channels/{uuid.uuid4()}/messages",
            headers={"Authorization": f"Bearer {token}"},
        )

        assert response.status_code == 401

    def test_bad_signature_returns_401(self, client):
        token = make_token(USER, secret="wrong")
        response = client.get(
            f"/channels/{uuid.uuid4()}/messages",
            headers={"Authorization": f"Bearer {token}"},
        )

        assert response.status_code == 401

    def test_non_bearer_scheme_returns_401(self, client):
        response = client.get(
            f"/channels/{uuid.uuid4()}/messages",
            headers={"Authorization": f"Basic {make_token(USER)}"},
        )

        assert response.status_code == 401

    def test_cookie_token_accepted(self, client):
        client.cookies.set(settings.AUTH_COOKIE_NAME, make_token(USER))
        response = client.get(f"/channels/{uuid.uuid4()}/messages")

        assert response.status_code == 200

    def test_cookie_wins_over_header(self, client):
        """Test the cookie is used even when a valid header is also sent."""
        client.cookies.set(settings.AUTH_COOKIE_NAME, make_token(USER, secret="wrong"))
        response = client.get(f"/channels/{uuid.uuid4()}/messages", headers=auth_headers(USER))

        assert response.status_code == 401

    def test_author_taken_from_token(self, client):
        channel_id = uuid.uuid4()
        created = create_message(client, channel_id)

        assert created["author_id"] == str(USER)


# ---------------------------------------------------------------------------
# Integration Tests: permissions
# ---------------------------------------------------------------------------

class TestPermissions:
    """Permission checks are delegated to the authorization service."""

    def test_create_requires_send_messages(self, client, db):
        authz = use_authorization(RecordingAuthorization(Permission.VIEW_CHANNELS))
        channel_id = uuid.uuid4()

        response = client.post(
            "/messages",
            json={"channel_id": str(channel_id), "content": "hi"},
            headers=auth_headers(USER),
        )

        assert response.status_code == 403
        assert db[MESSAGES_COLLECTION].count_documents({}) == 0
        actor, permission, resource = authz.calls[0]
        assert actor == USER
        assert permission == Permission.SEND_MESSAGES
        assert resource.id == channel_id

    def test_list_requires_view_channels(self, client):
        use_authorization(RecordingAuthorization(Permission.SEND_MESSAGES))

        response = client.get(f"/channels/{uuid.uuid4()}/messages", headers=auth_headers(USER))

        assert response.status_code == 403

    def test_get_checks_message_channel(self, client):
        channel_id = uuid.uuid4()
        created = create_message(client, channel_id)
        authz = use_authorization(RecordingAuthorization(Permission.VIEW_CHANNELS))

        response = client.get(f"/messages/{created['id']}", headers=auth_headers(USER))

        assert response.status_code == 200
        assert authz.calls[0][1] == Permission.VIEW_CHANNELS
        assert authz.calls[0][2].id == channel_id

    def test_pin_requires_manage_messages(self, client):
        created = create_message(client, uuid.uuid4())
        use_authorization(RecordingAuthorization(Permission.VIEW_CHANNELS, Permission.SEND_MESSAGES))

        response = client.post(f"/messages/{created['id']}/pin", headers=auth_headers(USER))

        assert response.status_code == 403
        fetched = client.get(f"/messages/{created['id']}", headers=auth_headers(USER)).json()
        assert fetched["is_pinned"] is False

    def test_deny_all_blocks_reads(self, client):
        use_authorization(DenyAllAuthorization())

        response = client.get(
            f"/channels/{uuid.uuid4()}/messages/search",
            params={"q": "x"},
            headers=auth_headers(USER),
        )

        assert response.status_code == 403
        assert response.json() == {"message": "Forbidden", "error_code": None, "status": 403}


# ---------------------------------------------------------------------------
# Integration Tests: failure rendering
# ---------------------------------------------------------------------------

class TestFailureResponses:
    """Failures outside the caller's control still use the standard error body."""

    def test_unreadable_authorization_response_returns_503(self, client):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>gateway</html>"))
        use_authorization(HttpAuthorization(httpx.Client(base_url="http://authz.test", transport=transport)))

        response = client.get(f"/channels/{uuid.uuid4()}/messages", headers=auth_headers(USER))

        assert response.status_code == 503
        assert response.headers["content-type"].startswith("application/json")
        assert response.json()["status"] == 503

    def test_unexpected_error_returns_json_500(self, db):
        class BrokenAuthorization(Authorization):
            def check(self, actor, permission, resource):
                raise RuntimeError("unexpected")

        use_authorization(BrokenAuthorization())
        try:
            with TestClient(app, raise_server_exceptions=False) as test_client:
                response = test_client.get(f"/channels/{uuid.uuid4()}/messages", headers=auth_headers(USER))
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 500
        assert response.headers["content-type"].startswith("application/json")
        assert response.json() == {"message": "Internal server error", "error_code": None, "status": 500}

    def test_schema_invalid_body_without_token_returns_401(self, client, db):
        """Test authentication is checked before the body is validated."""
        response = client.post("/messages", json={"content": 42})

        assert response.status_code == 401
        assert db[MESSAGES_COLLECTION].count_documents({}) == 0
