"""User accounts and authentication flows."""

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from proposal_review.auth import (
    Principal,
    PrincipalResolver,
    TokenCodec,
    TokenKind,
    hash_password,
    verify_password,
)
from proposal_review.errors import (
    AccountInactive,
    DuplicateResource,
    Forbidden,
    InvalidOperation,
    InvalidRole,
    NotFound,
    Unauthenticated,
)
from proposal_review.helpers.clock import Clock, utcnow
from proposal_review.models.auth import RegisterRequest
from proposal_review.models.db.proposal import Proposal
from proposal_review.models.db.user import Department, User
from proposal_review.models.enums import ProposalStatus, Role
from proposal_review.models.user import UserCreate, UserUpdate
from proposal_review.repository import load_user, save
from proposal_review.services.access_control import can_update_user

logger = logging.getLogger(__name__)

SELF_REGISTRATION_ROLES = frozenset(
    {Role.PRINCIPAL_INVESTIGATOR, Role.REVIEWER, Role.STAKEHOLDER}
)
ACTIVE_PROPOSAL_STATUSES = (ProposalStatus.SUBMITTED, ProposalStatus.UNDER_REVIEW)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    user: User


class UserService:
    """Registration, login and account administration."""

    def __init__(
        self,
        db: AsyncSession,
        codec: TokenCodec,
        resolver: PrincipalResolver,
        clock: Clock = utcnow,
    ):
        self.db = db
        self.codec = codec
        self.resolver = resolver
        self.clock = clock

    # ------------------------------------------------------------------
    # authentication
    # ------------------------------------------------------------------

    async def register(self, data: RegisterRequest) -> TokenPair:
        role = data.role or Role.PRINCIPAL_INVESTIGATOR
        if role not in SELF_REGISTRATION_ROLES:
            raise InvalidRole(f"Role {role.value} cannot be self-assigned at registration")
        user = await self._create(
            username=data.username,
            email=data.email,
            password=data.password,
            role=role,
            first_name=data.first_name,
            last_name=data.last_name,
            department_id=data.department_id,
        )
        logger.info("Registered user %s with role %s", user.username, role.value)
        return self._issue_pair(user)

    async def login(self, username_or_email: str, password: str) -> TokenPair:
        """Verify credentials and issue a token pair.

        The same error is raised for an unknown user and a wrong password.
        """
        identifier = username_or_email.strip()
        user = await load_user(self.db, username=identifier, email=identifier.lower())
        if user is None or not verify_password(password, user.password_hash):
            raise Unauthenticated("Invalid username or password")
        if not user.is_active:
            raise AccountInactive()
        user.last_login = self.clock()
        await self.db.flush()
        await self.db.refresh(user)
        logger.info("User %s logged in", user.username)
        return self._issue_pair(user)

    async def refresh(self, refresh_token: str) -> TokenPair:
        principal = await self.resolver.resolve_refresh(refresh_token, self.db)
        user = await self.get(principal.user_id)
        return self._issue_pair(user)

    def logout(self, principal: Principal) -> None:
        # No server-side session state; tokens expire naturally
        logger.info("User %s logged out", principal.username)

    def _issue_pair(self, user: User) -> TokenPair:
        return TokenPair(
            access_token=self.codec.issue(user.id, user.username, user.role, TokenKind.ACCESS),
            refresh_token=self.codec.issue(
                user.id, user.username, user.role, TokenKind.REFRESH
            ),
            expires_in=int(self.codec.lifetime(TokenKind.ACCESS).total_seconds()),
            user=user,
        )

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    async def get(self, user_id: uuid.UUID) -> User:
        user = await load_user(self.db, user_id=user_id)
        if user is None:
            raise NotFound("User", user_id)
        return user

    async def list_users(
        self, role: Optional[Role] = None, active_only: bool = False
    ) -> list[User]:
        stmt = select(User)
        if role is not None:
            stmt = stmt.where(User.role == role)
        if active_only:
            stmt = stmt.where(User.is_active.is_(True))
        result = await self.db.execute(stmt.order_by(User.username))
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # profile
    # ------------------------------------------------------------------

    async def update_profile(
        self, user_id: uuid.UUID, principal: Principal, data: UserUpdate
    ) -> User:
        if not can_update_user(principal, user_id):
            raise Forbidden()
        user = await self.get(user_id)
        changes = data.model_dump(exclude_unset=True)
        if "email" in changes and changes["email"] != user.email:
            await self._ensure_unique(email=changes["email"])
        if changes.get("department_id") is not None:
            await self._ensure_department(changes["department_id"])
        for name, value in changes.items():
            setattr(user, name, value)
        await self.db.flush()
        await self.db.refresh(user)
        return user

    # ------------------------------------------------------------------
    # administration
    # ------------------------------------------------------------------

    async def create(self, data: UserCreate) -> User:
        user = await self._create(**data.model_dump())
        logger.info("Admin created user %s with role %s", user.username, user.role.value)
        return user

    async def update_role(self, user_id: uuid.UUID, role: Role, principal: Principal) -> User:
        """The only operation that changes a user's role."""
        if not principal.has_role(Role.ADMIN):
            raise Forbidden()
        user = await self.get(user_id)
        old = user.role
        user.role = role
        await self.db.flush()
        await self.db.refresh(user)
        logger.info(
            "Role of %s changed %s -> %s by %s",
            user.username,
            old.value,
            role.value,
            principal.username,
        )
        return user

    async def set_active(self, user_id: uuid.UUID, active: bool) -> User:
        user = await self.get(user_id)
        user.is_active = active
        await self.db.flush()
        await self.db.refresh(user)
        logger.info("User %s %s", user.username, "activated" if active else "deactivated")
        return user

    async def delete(self, user_id: uuid.UUID) -> None:
        """Delete a user who leads no proposal currently in review.

        Raises:
            InvalidOperation: The user is PI of a SUBMITTED or UNDER_REVIEW
                proposal; deactivate the account instead.
        """
        user = await self.get(user_id)
        result = await self.db.execute(
            select(Proposal.id).where(
                Proposal.principal_investigator_id == user_id,
                Proposal.status.in_(ACTIVE_PROPOSAL_STATUSES),
            )
        )
        if result.first() is not None:
            raise InvalidOperation(
                "Cannot delete user with active proposals. Deactivate the account instead"
            )
        await self.db.delete(user)
        await self.db.flush()
        logger.info("User %s deleted", user.username)

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    async def _create(self, *, password: str, **fields) -> User:
        await self._ensure_unique(username=fields["username"], email=fields["email"])
        if fields.get("department_id") is not None:
            await self._ensure_department(fields["department_id"])
        fields["email"] = fields["email"].lower()
        return await save(
            self.db,
            User(password_hash=hash_password(password), is_active=True, **fields),
        )

    async def _ensure_unique(
        self, *, username: Optional[str] = None, email: Optional[str] = None
    ) -> None:
        clauses = []
        if username is not None:
            clauses.append(User.username == username)
        if email is not None:
            clauses.append(User.email == email.lower())
        result = await self.db.execute(
            select(User.username, User.email).where(or_(*clauses))
        )
        row = result.first()
        if row is None:
            return
        if username is not None and row.username == username:
            raise DuplicateResource("Username is already taken")
        raise DuplicateResource("Email is already registered")

    async def _ensure_department(self, department_id: uuid.UUID) -> None:
        if await self.db.get(Department, department_id) is None:
            raise NotFound("Department", department_id)
