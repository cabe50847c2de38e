"""Route-level authorization matrix and ownership predicates.

The matrix is an explicit ordered list of :class:`RouteRule` entries
evaluated top to bottom; the first rule whose verb and path pattern match
decides.  Public and common-authenticated rules come first, then exact
verb+path role rules, then the broader wildcard ones.  A path no rule
matches is open to any authenticated user.

Pattern syntax:

- ``*`` matches exactly one path segment;
- a trailing ``/**`` matches the prefix itself and anything below it.

Ownership checks that need the database (is this reviewer assigned, is this
user the PI of a project) live below the matrix as plain async helpers
called from the services and routers after the role check has passed.
"""

import enum
import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from proposal_review.auth import Principal
from proposal_review.errors import Forbidden, NotFound
from proposal_review.models.db.assignment import ProposalReviewer
from proposal_review.models.db.project import Milestone, Project
from proposal_review.models.db.proposal import Proposal
from proposal_review.models.enums import Role
from proposal_review.repository import load_assignment_by_id, load_proposal

logger = logging.getLogger(__name__)

ANY_METHOD = "*"


class Access(str, enum.Enum):
    PUBLIC = "PUBLIC"
    AUTHENTICATED = "AUTHENTICATED"
    ROLES = "ROLES"


class Decision(str, enum.Enum):
    ALLOW = "ALLOW"
    DENY = "DENY"


@dataclass(frozen=True)
class RouteRule:
    methods: frozenset[str]
    pattern: str
    access: Access
    roles: frozenset[Role] = frozenset()

    def matches(self, method: str, path: str) -> bool:
        if ANY_METHOD not in self.methods and method.upper() not in self.methods:
            return False
        return match_path(self.pattern, path)


@dataclass(frozen=True)
class AuthorizationResult:
    decision: Decision
    reason: str
    rule: Optional[RouteRule] = None

    @property
    def allowed(self) -> bool:
        return self.decision is Decision.ALLOW


def _segments(path: str) -> list[str]:
    return [s for s in path.split("/") if s]


def match_path(pattern: str, path: str) -> bool:
    """Match *path* against a rule pattern (``*`` = one segment, ``/**`` = subtree)."""
    pattern_parts = _segments(pattern)
    path_parts = _segments(path)

    if pattern_parts and pattern_parts[-1] == "**":
        prefix = pattern_parts[:-1]
        if len(path_parts) < len(prefix):
            return False
        path_parts = path_parts[: len(prefix)]
        pattern_parts = prefix
    elif len(pattern_parts) != len(path_parts):
        return False

    return all(p == "*" or p == s for p, s in zip(pattern_parts, path_parts))


# ---------------------------------------------------------------------------
# Rule construction
# ---------------------------------------------------------------------------


def _methods(methods: str) -> frozenset[str]:
    return frozenset(m.strip().upper() for m in methods.split(","))


def permit_all(methods: str, pattern: str) -> RouteRule:
    return RouteRule(_methods(methods), pattern, Access.PUBLIC)


def authenticated(methods: str, pattern: str) -> RouteRule:
    return RouteRule(_methods(methods), pattern, Access.AUTHENTICATED)


def has_any_role(methods: str, pattern: str, *roles: Role) -> RouteRule:
    return RouteRule(_methods(methods), pattern, Access.ROLES, frozenset(roles))


ADMIN = Role.ADMIN
PM = Role.PROJECT_MANAGER
PI = Role.PRINCIPAL_INVESTIGATOR
REVIEWER = Role.REVIEWER
CHAIR = Role.COMMITTEE_CHAIR
HEAD = Role.DEPARTMENT_HEAD
FINANCE = Role.FINANCIAL_OFFICER
STAKEHOLDER = Role.STAKEHOLDER

DEFAULT_RULES: tuple[RouteRule, ...] = (
    # Public
    permit_all("OPTIONS", "/**"),
    permit_all("*", "/api/auth/login"),
    permit_all("*", "/api/auth/register"),
    permit_all("*", "/api/auth/refresh"),
    permit_all("*", "/health"),
    permit_all("*", "/docs/**"),
    permit_all("*", "/redoc"),
    permit_all("*", "/openapi.json"),
    # Any authenticated user
    authenticated("*", "/api/auth/logout"),
    authenticated("*", "/api/users/profile"),
    authenticated("*", "/api/notifications/**"),
    # Admin
    has_any_role("*", "/api/auth/admin/**", ADMIN),
    # Users
    has_any_role("PUT", "/api/users/*/deactivate", ADMIN),
    has_any_role("PUT", "/api/users/*/activate", ADMIN),
    authenticated("PUT", "/api/users/*"),
    has_any_role("GET", "/api/users/**", ADMIN, HEAD, CHAIR, PM, PI),
    has_any_role("POST", "/api/users", ADMIN),
    has_any_role("DELETE", "/api/users/**", ADMIN),
    # Proposals
    has_any_role("GET", "/api/proposals", ADMIN, PI, PM, HEAD, REVIEWER, CHAIR, STAKEHOLDER),
    has_any_role(
        "GET", "/api/proposals/**", ADMIN, PI, PM, HEAD, REVIEWER, CHAIR, FINANCE, STAKEHOLDER
    ),
    has_any_role("POST", "/api/proposals", ADMIN, PI, PM),
    has_any_role("PUT", "/api/proposals/*/approve", ADMIN, HEAD),
    has_any_role("PUT", "/api/proposals/*/reject", ADMIN, HEAD),
    has_any_role("PUT", "/api/proposals/*/soft-delete", ADMIN, PI, PM, CHAIR),
    has_any_role("PUT", "/api/proposals/**", ADMIN, PI, PM),
    has_any_role("DELETE", "/api/proposals/**", ADMIN),
    # Reviewer assignments
    has_any_role("POST", "/api/proposal-reviewers/assign", ADMIN, CHAIR),
    has_any_role("GET", "/api/proposal-reviewers/my-assignments/**", REVIEWER),
    has_any_role("GET", "/api/proposal-reviewers/my-statistics", REVIEWER),
    has_any_role("GET", "/api/proposal-reviewers/my-proposal-ids", REVIEWER),
    has_any_role("GET", "/api/proposal-reviewers/check-assignment/*", REVIEWER),
    has_any_role("GET", "/api/proposal-reviewers/proposal/*", ADMIN, CHAIR, PI),
    has_any_role("GET", "/api/proposal-reviewers/overdue", ADMIN, CHAIR),
    has_any_role("GET", "/api/proposal-reviewers/reviewer/*/statistics", ADMIN, CHAIR, REVIEWER),
    has_any_role("PUT", "/api/proposal-reviewers/*/status", ADMIN, CHAIR, REVIEWER),
    has_any_role("DELETE", "/api/proposal-reviewers/*", ADMIN, CHAIR),
    # Evaluations
    has_any_role("GET", "/api/evaluations", ADMIN, CHAIR, HEAD),
    has_any_role("GET", "/api/evaluations/**", ADMIN, REVIEWER, CHAIR, HEAD),
    has_any_role("POST", "/api/evaluations", ADMIN, REVIEWER, CHAIR),
    has_any_role("PUT", "/api/evaluations/**", ADMIN, REVIEWER, CHAIR),
    has_any_role("DELETE", "/api/evaluations/**", ADMIN),
)


# ---------------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------------


class AuthorizationMatrix:
    """Ordered (verb, path) -> access rules; first match wins."""

    def __init__(self, rules: tuple[RouteRule, ...] = DEFAULT_RULES):
        self.rules = rules

    def decide(self, method: str, path: str) -> Optional[RouteRule]:
        """Return the first matching rule, or ``None`` when nothing matches."""
        for rule in self.rules:
            if rule.matches(method, path):
                return rule
        return None

    def is_public(self, method: str, path: str) -> bool:
        rule = self.decide(method, path)
        return rule is not None and rule.access is Access.PUBLIC

    def authorize(
        self, principal: Optional[Principal], method: str, path: str
    ) -> AuthorizationResult:
        """Decide whether *principal* may call ``method path``.

        ``principal`` is ``None`` for anonymous callers.  Unmatched paths
        require authentication and nothing more.
        """
        rule = self.decide(method, path)
        if rule is not None and rule.access is Access.PUBLIC:
            return AuthorizationResult(Decision.ALLOW, "public", rule)
        if principal is None:
            return AuthorizationResult(Decision.DENY, "authentication required", rule)
        if rule is None:
            return AuthorizationResult(Decision.ALLOW, "authenticated (default)")
        if rule.access is Access.AUTHENTICATED:
            return AuthorizationResult(Decision.ALLOW, "authenticated", rule)
        if principal.role in rule.roles:
            return AuthorizationResult(Decision.ALLOW, f"role {principal.role.value}", rule)
        return AuthorizationResult(
            Decision.DENY,
            f"role {principal.role.value} not permitted for {method.upper()} {rule.pattern}",
            rule,
        )


# ---------------------------------------------------------------------------
# Ownership predicates
# ---------------------------------------------------------------------------


def can_update_user(principal: Principal, target_user_id: uuid.UUID) -> bool:
    """Users may update themselves; ADMIN and DEPARTMENT_HEAD may update anyone."""
    if principal.user_id == target_user_id:
        return True
    return principal.has_role(Role.ADMIN, Role.DEPARTMENT_HEAD)


async def is_reviewer_assigned(
    db: AsyncSession, proposal_id: uuid.UUID, reviewer_id: uuid.UUID
) -> bool:
    result = await db.execute(
        select(ProposalReviewer.id).where(
            ProposalReviewer.proposal_id == proposal_id,
            ProposalReviewer.reviewer_id == reviewer_id,
        )
    )
    return result.first() is not None


async def require_proposal_view(
    db: AsyncSession, proposal_id: uuid.UUID, principal: Principal
) -> Proposal:
    """Load a proposal the caller may view.

    Reviewers see only proposals they are assigned to; every other role
    that passed the route check may view any proposal.

    Raises:
        NotFound: The proposal does not exist.
        Forbidden: A reviewer asked for a proposal not assigned to them.
    """
    proposal = await load_proposal(db, proposal_id)
    if proposal is None:
        raise NotFound("Proposal", proposal_id)
    if principal.role is Role.REVIEWER and not await is_reviewer_assigned(
        db, proposal_id, principal.user_id
    ):
        logger.warning(
            "Reviewer %s denied access to unassigned proposal %s",
            principal.username,
            proposal_id,
        )
        raise Forbidden()
    return proposal


async def require_assignment_owner(
    db: AsyncSession, assignment_id: uuid.UUID, principal: Principal
) -> ProposalReviewer:
    """Reviewers may only act on their own assignments."""
    assignment = await load_assignment_by_id(db, assignment_id)
    if assignment is None:
        raise NotFound("Assignment", assignment_id)
    if principal.role is Role.REVIEWER and assignment.reviewer_id != principal.user_id:
        raise Forbidden()
    return assignment


async def is_pi_of_project(
    db: AsyncSession, user_id: uuid.UUID, project_id: uuid.UUID
) -> bool:
    """Project and milestone ownership for the milestone collaborator."""
    result = await db.execute(
        select(Project.principal_investigator_id).where(Project.id == project_id)
    )
    return result.scalar_one_or_none() == user_id


async def is_pi_of_milestone(
    db: AsyncSession, user_id: uuid.UUID, milestone_id: uuid.UUID
) -> bool:
    result = await db.execute(
        select(Project.principal_investigator_id)
        .join(Milestone, Milestone.project_id == Project.id)
        .where(Milestone.id == milestone_id)
    )
    return result.scalar_one_or_none() == user_id
