"""
Shared test data factories and helpers.

Database tests run against a fresh in-memory SQLite database per test via
:func:`open_database`.  Tests are synchronous and drive async code with
``asyncio.run``.
"""

import itertools
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from sqlalchemy.ext.asyncio import AsyncSession

from proposal_review.auth import Principal
from proposal_review.config import Settings
from proposal_review.database import Database
from proposal_review.models.db.assignment import ProposalReviewer
from proposal_review.models.db.proposal import Proposal
from proposal_review.models.db.user import Department, User
from proposal_review.models.enums import AssignmentStatus, ProjectType, ProposalStatus, Role
from proposal_review.services.assignment_service import ReviewerAssignmentService
from proposal_review.services.evaluation_service import EvaluationGate
from proposal_review.services.notification_service import NotificationEvent, NotificationOutbox
from proposal_review.services.proposal_lifecycle import ProposalLifecycle

TEST_SECRET = "test-signing-secret-that-is-long-enough-0123456789"
DEFAULT_PASSWORD = "correct-horse-battery"
START = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)

_sequence = itertools.count(1)


# ============================================================================
# CLOCK AND SETTINGS
# ============================================================================

class FrozenClock:
    """A settable, advanceable clock."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_settings(**overrides) -> Settings:
    values = {
        "jwt_secret": TEST_SECRET,
        "database_url": "sqlite+aiosqlite:///:memory:",
        "rate_limit_enabled": False,
        "environment": "development",
        "allowed_origins": ("http://localhost:3000",),
    }
    values.update(overrides)
    return Settings(**values)


def naive_utc(value: datetime) -> datetime:
    """Normalise a datetime for comparison (SQLite drops the offset)."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# ============================================================================
# DATABASE
# ============================================================================

@asynccontextmanager
async def open_database():
    database = Database.from_settings(make_settings())
    await database.create_schema()
    try:
        yield database
    finally:
        await database.dispose()


async def make_department(db: AsyncSession, name: Optional[str] = None) -> Department:
    department = Department(name=name or f"Department {next(_sequence)}", code="DEP")
    db.add(department)
    await db.flush()
    return department


async def make_user(
    db: AsyncSession,
    role: Role = Role.PRINCIPAL_INVESTIGATOR,
    username: Optional[str] = None,
    password: str = DEFAULT_PASSWORD,
    is_active: bool = True,
    department_id: Optional[uuid.UUID] = None,
) -> User:
    """Factory function to create a persisted user (cheap bcrypt rounds)."""
    username = username or f"{role.value.lower()}_{next(_sequence)}"
    user = User(
        username=username,
        email=f"{username}@example.org",
        password_hash=bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=4)).decode(),
        role=role,
        is_active=is_active,
        department_id=department_id,
        first_name=username.title(),
    )
    db.add(user)
    await db.flush()
    return user


async def make_proposal(
    db: AsyncSession,
    pi: User,
    department: Department,
    status: ProposalStatus = ProposalStatus.DRAFT,
    title: str = "Soil microbiome resilience",
) -> Proposal:
    """Factory function to create a proposal directly in the given status."""
    proposal = Proposal(
        title=title,
        abstract="Field study of microbial communities under drought.",
        principal_investigator_id=pi.id,
        created_by_id=pi.id,
        department_id=department.id,
        project_type=ProjectType.RESEARCH,
        status=status,
    )
    db.add(proposal)
    await db.flush()
    return proposal


async def make_assignment(
    db: AsyncSession,
    proposal: Proposal,
    reviewer: User,
    assigned_by: User,
    status: AssignmentStatus = AssignmentStatus.PENDING,
    due_date: Optional[datetime] = None,
) -> ProposalReviewer:
    assignment = ProposalReviewer(
        proposal_id=proposal.id,
        reviewer_id=reviewer.id,
        assigned_by_id=assigned_by.id,
        status=status,
        assigned_date=START,
        due_date=due_date,
    )
    db.add(assignment)
    await db.flush()
    return assignment


def principal_for(user: User) -> Principal:
    return Principal(
        user_id=user.id,
        username=user.username,
        role=user.role,
        department_id=user.department_id,
    )


# ============================================================================
# NOTIFICATION SINKS
# ============================================================================

class RecordingSink:
    """Collects delivered events."""

    def __init__(self):
        self.events: list[NotificationEvent] = []

    async def deliver(self, event: NotificationEvent) -> None:
        self.events.append(event)

    def kinds(self) -> list[str]:
        return [e.kind.value for e in self.events]


class FailingSink:
    """Fails every delivery."""

    def __init__(self):
        self.attempts = 0

    async def deliver(self, event: NotificationEvent) -> None:
        self.attempts += 1
        raise RuntimeError("notification backend unavailable")


# ============================================================================
# SERVICE WIRING
# ============================================================================

@dataclass
class Services:
    outbox: NotificationOutbox
    lifecycle: ProposalLifecycle
    assignments: ReviewerAssignmentService
    evaluations: EvaluationGate


def build_services(db: AsyncSession, clock: FrozenClock, sink=None) -> Services:
    outbox = NotificationOutbox(sink)
    lifecycle = ProposalLifecycle(db, outbox, clock)
    return Services(
        outbox=outbox,
        lifecycle=lifecycle,
        assignments=ReviewerAssignmentService(db, lifecycle, outbox, clock),
        evaluations=EvaluationGate(db, lifecycle, outbox, clock),
    )
