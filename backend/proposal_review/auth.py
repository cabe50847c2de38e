"""Token-based authentication for the proposal review service.

Passwords are verified with bcrypt. Session tokens are HS256 JWTs signed
with python-jose using the secret from :class:`~proposal_review.config.Settings`;
there is no module-level secret.

Two pieces live here:

- :class:`TokenCodec` issues and validates tokens.  It is stateless apart
  from its settings and clock, and keeps no revocation list: a valid,
  unexpired token is honoured until it expires.
- :class:`PrincipalResolver` turns an ``Authorization`` header into a
  :class:`Principal` backed by the stored user record, so deactivation and
  role changes take effect on the next request.
"""

import enum
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import bcrypt
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from proposal_review.config import Settings
from proposal_review.errors import (
    AccountInactive,
    InvalidToken,
    MalformedToken,
    Unauthenticated,
)
from proposal_review.helpers.clock import Clock, utcnow
from proposal_review.models.enums import Role
from proposal_review.repository import load_user

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "
REQUIRED_CLAIMS = ("sub", "uid", "role", "kind", "iat", "exp")


# ---------------------------------------------------------------------------
# Password hashing (direct bcrypt, avoids passlib compatibility issues)
# ---------------------------------------------------------------------------
def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode(), hashed.encode())
    except ValueError:
        # Stored value is not a bcrypt hash
        return False


# ---------------------------------------------------------------------------
# Token codec
# ---------------------------------------------------------------------------
class TokenKind(str, enum.Enum):
    ACCESS = "ACCESS"
    REFRESH = "REFRESH"


@dataclass(frozen=True)
class TokenClaims:
    """Validated claim set of a session token."""

    username: str
    user_id: uuid.UUID
    role: Role
    kind: TokenKind
    issued_at: datetime
    expires_at: datetime


class TokenCodec:
    """Issue and validate signed session tokens."""

    def __init__(self, settings: Settings, clock: Clock = utcnow):
        self._secret = settings.jwt_secret
        self._algorithm = settings.jwt_algorithm
        self._lifetimes = {
            TokenKind.ACCESS: timedelta(hours=settings.access_token_hours),
            TokenKind.REFRESH: timedelta(days=settings.refresh_token_days),
        }
        self._clock = clock

    def lifetime(self, kind: TokenKind) -> timedelta:
        return self._lifetimes[kind]

    def issue(
        self,
        user_id: uuid.UUID,
        username: str,
        role: Role,
        kind: TokenKind = TokenKind.ACCESS,
    ) -> str:
        """Create a signed token for the given identity.

        ``iat`` and ``exp`` are whole seconds since the epoch.
        """
        issued = int(self._clock().timestamp())
        expires = issued + int(self._lifetimes[kind].total_seconds())
        payload = {
            "sub": username,
            "uid": str(user_id),
            "role": Role(role).value,
            "kind": kind.value,
            "iat": issued,
            "exp": expires,
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def validate(
        self, token: str, expected_kind: TokenKind = TokenKind.ACCESS
    ) -> TokenClaims:
        """Verify signature, claim shape, expiry and kind.

        Expiry is compared against the injected clock rather than left to
        the JWT library, so a token whose ``exp`` has passed is rejected
        regardless of anything else about it.

        Raises:
            InvalidToken: for any token that must not be honoured.
        """
        try:
            payload = self._decode(token)
            claims = self._to_claims(payload)
        except (JWTError, KeyError, TypeError, ValueError) as exc:
            logger.debug("Token rejected: %s", exc)
            raise InvalidToken() from exc

        if claims.expires_at <= claims.issued_at:
            raise InvalidToken()
        if claims.expires_at <= self._clock():
            raise InvalidToken("Token has expired")
        if claims.kind is not expected_kind:
            raise InvalidToken(f"{claims.kind.value} token not accepted here")
        return claims

    # -- claim projections ---------------------------------------------------

    def extract_user_id(self, token: str) -> uuid.UUID:
        return self._project(token).user_id

    def extract_role(self, token: str) -> Role:
        return self._project(token).role

    def extract_username(self, token: str) -> str:
        return self._project(token).username

    # -- internals -----------------------------------------------------------

    def _decode(self, token: str) -> dict[str, Any]:
        if not token:
            raise JWTError("empty token")
        return jwt.decode(
            token,
            self._secret,
            algorithms=[self._algorithm],
            options={"verify_exp": False},
        )

    def _project(self, token: str) -> TokenClaims:
        """Signature-checked claims without the expiry check."""
        try:
            return self._to_claims(self._decode(token))
        except (JWTError, KeyError, TypeError, ValueError) as exc:
            raise MalformedToken() from exc

    @staticmethod
    def _to_claims(payload: dict[str, Any]) -> TokenClaims:
        missing = [c for c in REQUIRED_CLAIMS if c not in payload]
        if missing:
            raise KeyError(f"missing claims: {', '.join(missing)}")
        if not isinstance(payload["iat"], int) or not isinstance(payload["exp"], int):
            raise TypeError("iat/exp must be integers")
        return TokenClaims(
            username=str(payload["sub"]),
            user_id=uuid.UUID(str(payload["uid"])),
            role=Role(payload["role"]),
            kind=TokenKind(payload["kind"]),
            issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )


def parse_bearer(header: Optional[str]) -> str:
    """Strip the ``Bearer`` prefix from an ``Authorization`` header value."""
    if not header or not header.startswith(BEARER_PREFIX):
        raise Unauthenticated()
    token = header[len(BEARER_PREFIX):].strip()
    if not token:
        raise Unauthenticated()
    return token


# ---------------------------------------------------------------------------
# Principal resolution
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class Principal:
    """The authenticated caller of one request."""

    user_id: uuid.UUID
    username: str
    role: Role
    department_id: Optional[uuid.UUID] = None

    def has_role(self, *roles: Role) -> bool:
        return self.role in roles


class PrincipalResolver:
    """Map a bearer token to the persisted user it names."""

    def __init__(self, codec: TokenCodec):
        self.codec = codec

    async def resolve(self, authorization: Optional[str], db: AsyncSession) -> Principal:
        """Resolve an ``Authorization`` header into a :class:`Principal`.

        Args:
            authorization: Raw header value (``"Bearer <token>"``).
            db: Session used to load the user record.

        Returns:
            The principal, carrying the *stored* role.

        Raises:
            Unauthenticated: Header missing/malformed, token invalid, or the
                user no longer exists.
            AccountInactive: The user exists but has been deactivated.
        """
        token = parse_bearer(authorization)
        claims = self.codec.validate(token, TokenKind.ACCESS)
        return await self._load(claims, db)

    async def resolve_refresh(self, refresh_token: str, db: AsyncSession) -> Principal:
        """Resolve a REFRESH token; the only path that accepts that kind."""
        claims = self.codec.validate(refresh_token, TokenKind.REFRESH)
        return await self._load(claims, db)

    async def _load(self, claims: TokenClaims, db: AsyncSession) -> Principal:
        user = await load_user(db, user_id=claims.user_id)
        if user is None or user.username != claims.username:
            raise Unauthenticated("User not found")
        if not user.is_active:
            raise AccountInactive()
        if user.role != claims.role:
            logger.info(
                "Role for user %s changed since token issue (%s -> %s)",
                user.username,
                claims.role.value,
                user.role.value,
            )
        return Principal(
            user_id=user.id,
            username=user.username,
            role=user.role,
            department_id=user.department_id,
        )
