"""Admin sign-in and session tokens with in-memory and Postgres backends."""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Protocol

import httpx
from sqlalchemy import DateTime, String, delete, select
from sqlalchemy.orm import Mapped, mapped_column

from djsite.config import Settings, settings
from djsite.db import Base, get_session_factory

logger = logging.getLogger(__name__)

SESSION_COOKIE = "admin_session"


class AuthenticationError(Exception):
    """Raised when credentials are rejected or sign-in is unavailable."""


@dataclass(frozen=True)
class AdminSession:
    """An authenticated admin session."""

    token: str
    email: str
    created_at: datetime
    expires_at: datetime

    @property
    def ttl_seconds(self) -> int:
        """Return remaining lifetime in whole seconds."""

        remaining = (self.expires_at - datetime.now(tz=timezone.utc)).total_seconds()
        return int(remaining) if remaining > 0 else 0


class AdminSessionRow(Base):
    """SQLAlchemy mapping for persisted admin sessions."""

    __tablename__ = "admin_sessions"

    token: Mapped[str] = mapped_column(String(96), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class InMemorySessionRepository:
    """Ephemeral repository used when no database is available."""

    def __init__(self) -> None:
        self._store: Dict[str, AdminSession] = {}

    async def store(self, session: AdminSession) -> None:
        self._store[session.token] = session

    async def fetch(self, token: str) -> AdminSession | None:
        session = self._store.get(token)
        if session is None:
            return None
        if session.expires_at <= datetime.now(tz=timezone.utc):
            self._store.pop(token, None)
            return None
        return session

    async def delete(self, token: str) -> None:
        self._store.pop(token, None)

    async def purge(self) -> None:
        now = datetime.now(tz=timezone.utc)
        expired = [key for key, session in self._store.items() if session.expires_at <= now]
        for key in expired:
            self._store.pop(key, None)

    def reset(self) -> None:
        self._store.clear()


class DatabaseSessionRepository:
    """Persist admin sessions in Postgres so every worker shares them."""

    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory

    async def store(self, session: AdminSession) -> None:
        async with self._session_factory() as db:
            db.add(
                AdminSessionRow(
                    token=session.token,
                    email=session.email,
                    created_at=session.created_at,
                    expires_at=session.expires_at,
                )
            )
            await db.commit()

    async def fetch(self, token: str) -> AdminSession | None:
        async with self._session_factory() as db:
            result = await db.execute(
                select(AdminSessionRow).where(AdminSessionRow.token == token)
            )
            row: Optional[AdminSessionRow] = result.scalar_one_or_none()
            if row is None:
                return None
            if row.expires_at <= datetime.now(tz=timezone.utc):
                await db.delete(row)
                await db.commit()
                return None
            return AdminSession(row.token, row.email, row.created_at, row.expires_at)

    async def delete(self, token: str) -> None:
        async with self._session_factory() as db:
            await db.execute(delete(AdminSessionRow).where(AdminSessionRow.token == token))
            await db.commit()

    async def purge(self) -> None:
        async with self._session_factory() as db:
            await db.execute(
                delete(AdminSessionRow).where(
                    AdminSessionRow.expires_at <= datetime.now(tz=timezone.utc)
                )
            )
            await db.commit()


class CredentialBackend(Protocol):
    async def verify(self, email: str, password: str) -> str: ...


class SettingsCredentialBackend:
    """Single admin account configured through ADMIN_EMAIL / ADMIN_PASSWORD."""

    def __init__(self, email: str, password: str) -> None:
        self._email = email.strip().lower()
        self._password = password

    async def verify(self, email: str, password: str) -> str:
        email_ok = hmac.compare_digest(email.strip().lower().encode(), self._email.encode())
        password_ok = hmac.compare_digest(password.encode(), self._password.encode())
        if not (email_ok and password_ok):
            raise AuthenticationError("Invalid email or password")
        return self._email


class SupabaseCredentialBackend:
    """Password grant against Supabase Auth."""

    def __init__(
        self,
        base_url: str,
        anon_key: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = f"{base_url.rstrip('/')}/auth/v1/token"
        self._anon_key = anon_key
        self._timeout = timeout
        self._transport = transport

    async def verify(self, email: str, password: str) -> str:
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                headers={"apikey": self._anon_key},
                transport=self._transport,
            ) as client:
                response = await client.post(
                    self._url,
                    params={"grant_type": "password"},
                    json={"email": email, "password": password},
                )
        except httpx.HTTPError as exc:
            logger.warning("Supabase sign-in request failed: %s", exc)
            raise AuthenticationError("Sign-in is temporarily unavailable") from exc
        if response.status_code in {400, 401, 422}:
            raise AuthenticationError("Invalid email or password")
        if response.is_error:
            logger.warning("Supabase sign-in returned %s", response.status_code)
            raise AuthenticationError("Sign-in is temporarily unavailable")
        user = response.json().get("user") or {}
        return str(user.get("email") or email)


class AuthService:
    """Verify admin credentials and manage the resulting session tokens."""

    def __init__(
        self,
        backend: CredentialBackend | None,
        *,
        ttl: timedelta | None = None,
    ) -> None:
        self._backend = backend
        self._ttl = ttl or timedelta(minutes=settings.admin_session_ttl_minutes)
        session_factory = get_session_factory()
        if session_factory is not None:
            self._repository: InMemorySessionRepository | DatabaseSessionRepository = (
                DatabaseSessionRepository(session_factory)
            )
        else:
            self._repository = InMemorySessionRepository()

    @property
    def configured(self) -> bool:
        return self._backend is not None

    async def sign_in(self, email: str, password: str) -> AdminSession:
        if self._backend is None:
            raise AuthenticationError("Admin sign-in is not configured")
        if not email.strip() or not password:
            raise AuthenticationError("Email and password are required")
        verified_email = await self._backend.verify(email, password)
        created_at = datetime.now(tz=timezone.utc)
        session = AdminSession(
            token=_generate_token(),
            email=verified_email,
            created_at=created_at,
            expires_at=created_at + self._ttl,
        )
        await self._repository.purge()
        await self._repository.store(session)
        logger.info("Admin %s signed in", verified_email)
        return session

    async def describe(self, token: str | None) -> AdminSession | None:
        if not token:
            return None
        return await self._repository.fetch(token)

    async def sign_out(self, token: str | None) -> None:
        if token:
            await self._repository.delete(token)

    def reset(self) -> None:
        reset_fn = getattr(self._repository, "reset", None)
        if callable(reset_fn):
            reset_fn()


def build_auth_service(config: Settings = settings) -> AuthService:
    backend: CredentialBackend | None = None
    if config.supabase_url and config.supabase_anon_key:
        backend = SupabaseCredentialBackend(config.supabase_url, config.supabase_anon_key)
    elif config.admin_email and config.admin_password:
        backend = SettingsCredentialBackend(config.admin_email, config.admin_password)
    else:
        logger.warning("No admin credentials configured; the admin panel is locked")
    return AuthService(
        backend, ttl=timedelta(minutes=max(1, config.admin_session_ttl_minutes))
    )


def _generate_token() -> str:
    from secrets import token_urlsafe

    return token_urlsafe(32)
