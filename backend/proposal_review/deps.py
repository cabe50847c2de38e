"""Shared dependencies for all proposal review API routers.

Every router module can ``from proposal_review.deps import ...`` without
pulling in :mod:`proposal_review.main`.  Application-wide objects (settings,
database, token codec, clock, notification sink) live on ``app.state`` and
are reached through the request.
"""

import logging
from collections.abc import AsyncGenerator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from proposal_review.auth import Principal
from proposal_review.errors import Unauthenticated
from proposal_review.services.assignment_service import ReviewerAssignmentService
from proposal_review.services.evaluation_service import EvaluationGate
from proposal_review.services.notification_service import NotificationOutbox
from proposal_review.services.proposal_lifecycle import ProposalLifecycle
from proposal_review.services.user_service import UserService

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Database session + notification outbox
# ---------------------------------------------------------------------------


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Yield one transaction per request.

    Commits on success and rolls back on error.  Notifications queued during
    the request are delivered only after the commit succeeded.
    """
    outbox = NotificationOutbox(request.app.state.notification_sink)
    request.state.outbox = outbox
    try:
        async with request.app.state.database.session() as session:
            yield session
    except Exception:
        outbox.discard()
        raise
    await outbox.flush()


def get_outbox(request: Request, db: AsyncSession = Depends(get_db)) -> NotificationOutbox:
    return request.state.outbox


# ---------------------------------------------------------------------------
# Authenticated principal
# ---------------------------------------------------------------------------


def get_principal(request: Request) -> Principal:
    """The principal resolved by ``AccessGateMiddleware`` for this request."""
    principal = getattr(request.state, "principal", None)
    if principal is None:
        raise Unauthenticated()
    return principal


# ---------------------------------------------------------------------------
# Service factories
# ---------------------------------------------------------------------------


def get_lifecycle(
    request: Request,
    db: AsyncSession = Depends(get_db),
    outbox: NotificationOutbox = Depends(get_outbox),
) -> ProposalLifecycle:
    return ProposalLifecycle(db, outbox, request.app.state.clock)


def get_assignment_service(
    request: Request,
    db: AsyncSession = Depends(get_db),
    outbox: NotificationOutbox = Depends(get_outbox),
    lifecycle: ProposalLifecycle = Depends(get_lifecycle),
) -> ReviewerAssignmentService:
    return ReviewerAssignmentService(db, lifecycle, outbox, request.app.state.clock)


def get_evaluation_gate(
    request: Request,
    db: AsyncSession = Depends(get_db),
    outbox: NotificationOutbox = Depends(get_outbox),
    lifecycle: ProposalLifecycle = Depends(get_lifecycle),
) -> EvaluationGate:
    return EvaluationGate(db, lifecycle, outbox, request.app.state.clock)


def get_user_service(
    request: Request, db: AsyncSession = Depends(get_db)
) -> UserService:
    state = request.app.state
    return UserService(db, state.token_codec, state.principal_resolver, state.clock)
