from datetime import timedelta

import httpx
import pytest

from djsite.services.auth import (
    AuthenticationError,
    AuthService,
    SettingsCredentialBackend,
    SupabaseCredentialBackend,
)
from tests.helpers import run


def _service(**kwargs) -> AuthService:
    return AuthService(SettingsCredentialBackend("Admin@Example.com", "s3cret"), **kwargs)


def test_sign_in_and_describe_session() -> None:
    service = _service()

    session = run(service.sign_in(" admin@example.com ", "s3cret"))

    assert session.email == "admin@example.com"
    assert session.ttl_seconds > 0
    assert run(service.describe(session.token)) == session


def test_wrong_password_is_rejected() -> None:
    service = _service()

    with pytest.raises(AuthenticationError, match="Invalid email or password"):
        run(service.sign_in("admin@example.com", "guess"))


def test_blank_credentials_are_rejected_before_checking() -> None:
    with pytest.raises(AuthenticationError, match="required"):
        run(_service().sign_in("  ", ""))


def test_unconfigured_service_refuses_sign_in() -> None:
    service = AuthService(None)

    assert service.configured is False
    with pytest.raises(AuthenticationError):
        run(service.sign_in("admin@example.com", "s3cret"))


def test_sign_out_invalidates_token() -> None:
    service = _service()
    session = run(service.sign_in("admin@example.com", "s3cret"))

    run(service.sign_out(session.token))

    assert run(service.describe(session.token)) is None
    assert run(service.describe(None)) is None


def test_expired_sessions_are_not_returned() -> None:
    service = _service(ttl=timedelta(seconds=-1))
    session = run(service.sign_in("admin@example.com", "s3cret"))

    assert run(service.describe(session.token)) is None


def test_supabase_password_grant() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if b"wrong" in request.content:
            return httpx.Response(400, json={"error": "invalid_grant"})
        return httpx.Response(200, json={"access_token": "t", "user": {"email": "dj@nova.fm"}})

    backend = SupabaseCredentialBackend(
        "https://project.supabase.co", "anon-key", transport=httpx.MockTransport(handler)
    )

    assert run(backend.verify("DJ@nova.fm", "right")) == "dj@nova.fm"
    with pytest.raises(AuthenticationError, match="Invalid email or password"):
        run(backend.verify("dj@nova.fm", "wrong"))
    assert calls[0].url.params["grant_type"] == "password"
    assert calls[0].headers["apikey"] == "anon-key"


def test_supabase_outage_is_reported_as_unavailable() -> None:
    backend = SupabaseCredentialBackend(
        "https://project.supabase.co",
        "anon-key",
        transport=httpx.MockTransport(lambda request: httpx.Response(503)),
    )

    with pytest.raises(AuthenticationError, match="temporarily unavailable"):
        run(backend.verify("dj@nova.fm", "right"))
