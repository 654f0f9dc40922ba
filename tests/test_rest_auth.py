"""Tests for the hosted auth provider and the session file."""
import asyncio
import datetime
import os
import stat

import httpx
import pytest

from notesync.exceptions import AuthError, ErrorCode
from notesync.models.schema import AuthEvent, Session
from notesync.storage.rest_auth import RestAuthProvider, session_from_payload
from notesync.storage.session_file import SessionFile
from tests.conftest import USER

pytestmark = pytest.mark.anyio

RESET_URL = "http://localhost:3000/reset-password"


def token_payload(user_id=USER, access_token="at-1", **extra):
    payload = {
        "access_token": access_token,
        "refresh_token": "rt-1",
        "expires_in": 3600,
        "token_type": "bearer",
        "user": {"id": user_id, "email": "one@example.com"},
    }
    payload.update(extra)
    return payload


@pytest.fixture
def session_file(tmp_path):
    return SessionFile(tmp_path / "session.json")


@pytest.fixture
async def provider(anyio_backend, api_client, session_file):
    provider = RestAuthProvider(api_client, session_file=session_file, reset_redirect_url=RESET_URL)
    yield provider
    await provider.aclose()


@pytest.fixture
def events(provider):
    seen = []
    provider.on_session_change(lambda event, session: seen.append((event, session)))
    return seen


class TestSessionFromPayload:

    def test_expires_in(self):
        before = datetime.datetime.now(datetime.timezone.utc)
        session = session_from_payload(token_payload(), "sign_in")
        assert session.user_id == USER
        assert session.access_token == "at-1"
        assert session.expires_at >= before + datetime.timedelta(seconds=3599)

    def test_expires_at_timestamp(self):
        session = session_from_payload(token_payload(expires_at=1714564800), "sign_in")
        assert session.expires_at == datetime.datetime(2024, 5, 1, 12, 0, tzinfo=datetime.timezone.utc)

    @pytest.mark.parametrize(
        "payload",
        [None, {}, {"user": "someone"}, {"user": {"email": "x@example.com"}}],
    )
    def test_malformed(self, payload):
        with pytest.raises(AuthError, match="Malformed auth response"):
            session_from_payload(payload, "sign_in")


class TestSignIn:

    async def test_password_grant(self, provider, router, events, session_file):
        router.add("POST", "/auth/v1/token", body=token_payload())
        session = await provider.sign_in("one@example.com", "secret1")

        request = router.last()
        assert request.url.params["grant_type"] == "password"
        assert router.json() == {"email": "one@example.com", "password": "secret1"}
        assert events == [(AuthEvent.SIGNED_IN, session)]
        assert provider.access_token() == "at-1"
        assert session_file.load() == session

    async def test_rejected_credentials(self, provider, router, events):
        router.add(
            "POST",
            "/auth/v1/token",
            status=400,
            body={"error": "invalid_grant", "error_description": "Invalid login credentials"},
        )
        with pytest.raises(AuthError) as exc_info:
            await provider.sign_in("one@example.com", "wrong")
        assert exc_info.value.message == "Invalid login credentials"
        assert exc_info.value.status_code == 400
        assert events == []
        assert provider.access_token() is None


class TestSignUp:

    async def test_confirmation_pending(self, provider, router, events):
        router.add("POST", "/auth/v1/signup", body={"id": "new-user", "email": "new@example.com"})
        result = await provider.sign_up("new@example.com", "secret3")
        assert result.pending_confirmation
        assert result.session is None
        assert events == []

    async def test_signed_in_directly(self, provider, router, events):
        router.add("POST", "/auth/v1/signup", body=token_payload(user_id="new-user"))
        result = await provider.sign_up("new@example.com", "secret3")
        assert result.session.user_id == "new-user"
        assert events == [(AuthEvent.SIGNED_IN, result.session)]

    async def test_already_registered(self, provider, router):
        router.add("POST", "/auth/v1/signup", status=422, body={"msg": "User already registered"})
        with pytest.raises(AuthError, match="User already registered"):
            await provider.sign_up("one@example.com", "secret1")


class TestPasswordReset:

    async def test_sends_redirect(self, provider, router):
        router.add("POST", "/auth/v1/recover", body={})
        await provider.request_password_reset("one@example.com")
        assert router.last().url.params["redirect_to"] == RESET_URL
        assert router.json() == {"email": "one@example.com"}

    async def test_rate_limited(self, provider, router):
        message = "For security purposes, you can only request this after 60 seconds."
        router.add("POST", "/auth/v1/recover", status=429, body={"msg": message})
        with pytest.raises(AuthError) as exc_info:
            await provider.request_password_reset("one@example.com")
        assert exc_info.value.message == message
        assert exc_info.value.code is ErrorCode.AUTH_RESET_FAILED


class TestSignOut:

    async def test_clears_session(self, provider, router, events, session_file):
        router.add("POST", "/auth/v1/token", body=token_payload())
        router.add("POST", "/auth/v1/logout", status=204)
        await provider.sign_in("one@example.com", "secret1")
        await provider.sign_out()

        assert router.last().headers["authorization"] == "Bearer at-1"
        assert events[-1] == (AuthEvent.SIGNED_OUT, None)
        assert provider.access_token() is None
        assert session_file.load() is None

    async def test_server_failure_still_signs_out(self, provider, router, events):
        router.add("POST", "/auth/v1/token", body=token_payload())
        router.add("POST", "/auth/v1/logout", status=500, body={"message": "boom"})
        await provider.sign_in("one@example.com", "secret1")
        await provider.sign_out()
        assert events[-1] == (AuthEvent.SIGNED_OUT, None)

    async def test_without_session_is_a_no_op(self, provider, router, events):
        await provider.sign_out()
        assert router.requests == []
        assert events == []


class TestRestore:

    async def test_no_file(self, provider):
        assert await provider.get_current_session() is None

    async def test_restores_stored_session(self, provider, session_file, router):
        stored = Session(user_id=USER, access_token="at-0")
        session_file.save(stored)
        assert await provider.get_current_session() == stored
        assert provider.access_token() == "at-0"
        assert router.requests == []

    async def test_expired_session_is_refreshed(self, provider, session_file, router):
        session_file.save(
            Session(
                user_id=USER,
                access_token="at-0",
                refresh_token="rt-0",
                expires_at=datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc),
            )
        )
        router.add("POST", "/auth/v1/token", body=token_payload(access_token="at-2"))

        session = await provider.get_current_session()

        assert router.last().url.params["grant_type"] == "refresh_token"
        assert router.json() == {"refresh_token": "rt-0"}
        assert session.access_token == "at-2"
        assert session_file.load().access_token == "at-2"

    async def test_failed_refresh_drops_session(self, provider, session_file, router):
        session_file.save(
            Session(
                user_id=USER,
                refresh_token="rt-0",
                expires_at=datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc),
            )
        )
        router.add("POST", "/auth/v1/token", status=400, body={"error_description": "Invalid Refresh Token"})
        assert await provider.get_current_session() is None
        assert not session_file.path.exists()

    async def test_restored_only_once(self, provider, session_file):
        assert await provider.get_current_session() is None
        session_file.save(Session(user_id=USER))
        assert await provider.get_current_session() is None


async def settle():
    for _ in range(50):
        await asyncio.sleep(0)


def token_grants(refresh_status=200, **password_extra):
    """Answer password grants with ``password_extra`` and refresh grants with at-2."""

    def handler(request):
        if request.url.params["grant_type"] == "password":
            return httpx.Response(200, json=token_payload(**password_extra))
        if refresh_status != 200:
            return httpx.Response(refresh_status, json={"error_description": "Invalid Refresh Token"})
        return httpx.Response(200, json=token_payload(access_token="at-2"))

    return handler


class TestRenewal:

    async def test_expiring_session_is_renewed(self, provider, router, events, session_file):
        router.respond("POST", "/auth/v1/token", token_grants(expires_in=30))
        signed_in = await provider.sign_in("one@example.com", "secret1")
        await settle()

        assert router.last().url.params["grant_type"] == "refresh_token"
        assert router.json() == {"refresh_token": "rt-1"}
        assert [event for event, _ in events] == [AuthEvent.SIGNED_IN, AuthEvent.TOKEN_REFRESHED]
        renewed = events[-1][1]
        assert renewed.user_id == signed_in.user_id
        assert provider.access_token() == "at-2"
        assert session_file.load().access_token == "at-2"

    async def test_failed_renewal_signs_out(self, provider, router, events, session_file):
        router.respond("POST", "/auth/v1/token", token_grants(refresh_status=400, expires_in=30))
        await provider.sign_in("one@example.com", "secret1")
        await settle()

        assert events[-1] == (AuthEvent.SIGNED_OUT, None)
        assert provider.access_token() is None
        assert session_file.load() is None

    async def test_renewal_waits_until_near_expiry(self, provider, router, events):
        router.respond("POST", "/auth/v1/token", token_grants(expires_in=3600))
        await provider.sign_in("one@example.com", "secret1")
        await settle()

        assert len(router.requests) == 1
        assert [event for event, _ in events] == [AuthEvent.SIGNED_IN]
        assert provider.access_token() == "at-1"

    async def test_session_without_expiry_not_renewed(self, provider, router, events):
        router.respond("POST", "/auth/v1/token", token_grants(expires_in=None))
        session = await provider.sign_in("one@example.com", "secret1")
        await settle()

        assert session.expires_at is None
        assert len(router.requests) == 1

    async def test_sign_out_stops_renewal(self, provider, router, events):
        router.respond("POST", "/auth/v1/token", token_grants(expires_in=3600))
        router.add("POST", "/auth/v1/logout", status=204)
        await provider.sign_in("one@example.com", "secret1")
        await provider.sign_out()
        await settle()

        assert [request.url.path for request in router.requests] == ["/auth/v1/token", "/auth/v1/logout"]
        assert events[-1] == (AuthEvent.SIGNED_OUT, None)

class TestSessionFile:

    def test_missing_file(self, session_file):
        assert session_file.load() is None

    def test_garbage_is_ignored(self, session_file):
        session_file.path.write_text("{not json", encoding="utf-8")
        assert session_file.load() is None

    def test_saved_privately(self, session_file):
        session_file.save(Session(user_id=USER, access_token="secret"))
        mode = stat.S_IMODE(os.stat(session_file.path).st_mode)
        assert mode == 0o600
        assert not session_file.path.with_suffix(".tmp").exists()

    def test_clear_is_idempotent(self, session_file):
        session_file.save(Session(user_id=USER))
        session_file.clear()
        session_file.clear()
        assert not session_file.path.exists()
