"""Accounts, password verification and stateless session tokens.

Two identity variants resolve to the same ``User`` row keyed by email:

- password: :class:`PasswordIdentity` checks an email/password pair against
  the stored bcrypt hash and yields :class:`IdentityClaims`;
  ``CredentialStore.authenticate`` routes through it.
- federated: an :class:`IdentityVerifier` turns a provider assertion into
  normalized :class:`IdentityClaims`, then ``federated_login`` finds or
  creates the user.

Sessions are HS256 JWTs carrying only the user id (``sub``) and ``exp``.
Nothing is stored server side, so a token stays valid until it expires.
"""
from __future__ import annotations

import logging
import secrets
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol

import bcrypt
import jwt

from .db import Database, User, utc_now
from .errors import BadCredential, DuplicateEmail, InvalidInput, NotFound, Unauthorized

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
# bcrypt only looks at the first 72 bytes; newer releases reject longer input.
MAX_PASSWORD_BYTES = 72


# -----------------------------
# Sessions
# -----------------------------
@dataclass(frozen=True)
class Session:
    token: str
    user_id: int
    expires_at: datetime


class SessionSigner:
    """Issue and verify signed session tokens."""

    def __init__(self, secret: str, ttl: timedelta = timedelta(hours=24)) -> None:
        if not secret:
            raise ValueError("session secret cannot be empty")
        self._secret = secret
        self.ttl = ttl

    def issue(self, user_id: int, *, expires_at: Optional[datetime] = None) -> Session:
        exp = expires_at or (datetime.now(timezone.utc) + self.ttl)
        token = jwt.encode({"sub": str(user_id), "exp": exp}, self._secret, algorithm=ALGORITHM)
        return Session(token=token, user_id=user_id, expires_at=exp)

    def verify(self, token: Optional[str]) -> int:
        """Return the user id bound to ``token`` or raise Unauthorized."""
        if not token:
            raise Unauthorized("No token provided")
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                options={"require": ["exp", "sub"]},
            )
            return int(payload["sub"])
        except jwt.ExpiredSignatureError:
            raise Unauthorized("Session expired")
        except (jwt.InvalidTokenError, KeyError, TypeError, ValueError):
            raise Unauthorized("Unauthorized")


# -----------------------------
# Identity providers
# -----------------------------
@dataclass(frozen=True)
class IdentityClaims:
    email: str
    display_name: str


class IdentityVerifier(Protocol):
    def verify(self, assertion: str) -> IdentityClaims:
        """Validate a provider assertion; raise Unauthorized when it is not acceptable."""
        ...


class GoogleIdentityVerifier:
    """Verify Google ID tokens against a configured OAuth client id."""

    def __init__(self, client_id: str) -> None:
        self.client_id = client_id

    def verify(self, assertion: str) -> IdentityClaims:
        # Lazy import so the rest of the server works without google-auth installed.
        from google.auth.transport import requests as google_requests
        from google.oauth2 import id_token

        try:
            info = id_token.verify_oauth2_token(assertion, google_requests.Request(), self.client_id)
        except ValueError as e:
            logger.warning("Google token rejected: %s", e)
            raise Unauthorized("Invalid Google Token")

        email = (info.get("email") or "").strip()
        if not email:
            raise Unauthorized("Invalid Google Token")
        return IdentityClaims(email=email, display_name=info.get("name") or email.split("@")[0])


class PasswordIdentity:
    """Local variant: an email/password pair checked against the stored bcrypt hash."""

    def __init__(self, lookup: Callable[[str], Optional[User]]) -> None:
        self.lookup = lookup

    def verify(self, email: str, password: str) -> IdentityClaims:
        user = self.lookup(_normalize_email(email))
        if user is None:
            raise NotFound("User not found")
        secret = (password or "").encode("utf-8")
        if not secret or len(secret) > MAX_PASSWORD_BYTES:
            raise BadCredential("Invalid credentials")
        try:
            ok = bcrypt.checkpw(secret, user.password_hash.encode("utf-8"))
        except ValueError:
            # Unreadable stored hash.
            logger.warning("Stored password hash for user %s is not usable", user.id)
            ok = False
        if not ok:
            raise BadCredential("Invalid credentials")
        return IdentityClaims(email=user.email, display_name=user.name)


# -----------------------------
# Credential store
# -----------------------------
def _normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _row_to_user(row: sqlite3.Row) -> User:
    return User(
        id=row["id"],
        name=row["name"] or "",
        email=row["email"],
        password_hash=row["password_hash"],
        created_at=row["created_at"],
    )


class CredentialStore:
    """User records plus password hashing and session issuance."""

    def __init__(self, db: Database, signer: SessionSigner, *, bcrypt_rounds: int = 8) -> None:
        self.db = db
        self.signer = signer
        self.bcrypt_rounds = bcrypt_rounds
        self.passwords = PasswordIdentity(self._find_by_email)

    def _hash(self, password: str) -> str:
        salt = bcrypt.gensalt(rounds=self.bcrypt_rounds)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    def _find_by_email(self, email: str) -> Optional[User]:
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT id, name, email, password_hash, created_at FROM users WHERE email = ?",
                (email,),
            ).fetchone()
        return _row_to_user(row) if row else None

    def _insert(self, name: str, email: str, password_hash: str) -> User:
        try:
            with self.db.transaction() as conn:
                row = conn.execute(
                    """
                    INSERT INTO users (name, email, password_hash, created_at)
                    VALUES (?, ?, ?, ?)
                    RETURNING id, name, email, password_hash, created_at
                    """,
                    (name, email, password_hash, utc_now()),
                ).fetchone()
        except sqlite3.IntegrityError:
            raise DuplicateEmail("Email already exists")
        return _row_to_user(row)

    def get_user(self, user_id: int) -> User:
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT id, name, email, password_hash, created_at FROM users WHERE id = ?",
                (user_id,),
            ).fetchone()
        if row is None:
            raise NotFound("User not found")
        return _row_to_user(row)

    def register(self, name: str, email: str, password: str) -> User:
        email = _normalize_email(email)
        if not email:
            raise InvalidInput("email is required")
        if not password:
            raise InvalidInput("password is required")
        if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise InvalidInput(f"password cannot exceed {MAX_PASSWORD_BYTES} bytes")
        user = self._insert((name or "").strip(), email, self._hash(password))
        logger.info("Registered user %s", user.id)
        return user

    def authenticate(self, email: str, password: str) -> Session:
        claims = self.passwords.verify(email, password)
        user = self._find_by_email(claims.email)
        if user is None:
            raise NotFound("User not found")
        return self.signer.issue(user.id)

    def federated_login(self, assertion: str, verifier: IdentityVerifier) -> Session:
        """Find or create the user named by a verified provider assertion."""
        claims = verifier.verify(assertion)
        email = _normalize_email(claims.email)
        user = self._find_by_email(email)
        if user is None:
            # Federated users never log in with a password; store an unguessable one.
            unusable = self._hash(secrets.token_urlsafe(32))
            try:
                user = self._insert(claims.display_name, email, unusable)
                logger.info("Created federated user %s", user.id)
            except DuplicateEmail:
                # Concurrent first login for the same email.
                user = self._find_by_email(email)
                if user is None:
                    raise
        return self.signer.issue(user.id)
