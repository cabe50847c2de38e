"""Proposal Review API application factory.

Run locally with::

    uvicorn proposal_review.main:create_app --factory --reload

``create_app`` builds everything from an explicit :class:`Settings` object;
tests pass their own settings, database, notification sink and clock.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from proposal_review import __version__
from proposal_review.auth import PrincipalResolver, TokenCodec
from proposal_review.config import Settings, load_settings
from proposal_review.database import Database
from proposal_review.helpers.clock import Clock, utcnow
from proposal_review.routers import (
    auth,
    evaluations,
    health,
    notifications,
    proposal_reviewers,
    proposals,
    users,
)
from proposal_review.security import setup_security
from proposal_review.services.access_control import AuthorizationMatrix
from proposal_review.services.notification_service import (
    DatabaseNotificationSink,
    NotificationSink,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    *,
    database: Optional[Database] = None,
    notification_sink: Optional[NotificationSink] = None,
    clock: Clock = utcnow,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Frozen settings; loaded from the environment when omitted.
        database: Pre-built database (tests share one in-memory engine).
        notification_sink: Where notifications go after commit; defaults to
            the ``notifications`` table.
        clock: Time source for token expiry, due dates and timestamps.
    """
    if settings is None:
        settings = load_settings()
    else:
        settings.validate()
    if database is None:
        database = Database.from_settings(settings)
    if notification_sink is None:
        notification_sink = DatabaseNotificationSink(database, clock)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifecycle - startup and shutdown"""
        if settings.create_schema:
            await database.create_schema()
            logger.info("Database schema ensured")
        logger.info("Proposal Review API started (environment=%s)", settings.environment)
        yield
        await database.dispose()
        logger.info("Proposal Review API shutdown complete")

    app = FastAPI(
        title="Proposal Review API",
        description="Research proposal submission, reviewer assignment and evaluation",
        version=__version__,
        lifespan=lifespan,
    )

    codec = TokenCodec(settings, clock)
    app.state.settings = settings
    app.state.database = database
    app.state.clock = clock
    app.state.token_codec = codec
    app.state.principal_resolver = PrincipalResolver(codec)
    app.state.authorization_matrix = AuthorizationMatrix()
    app.state.notification_sink = notification_sink

    # =========================================================================
    # CORS Configuration
    # =========================================================================
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.allowed_origins),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Requested-With"],
    )
    logger.info("CORS allowed origins: %s", list(settings.allowed_origins))

    # =========================================================================
    # Security Middleware Setup
    # =========================================================================
    setup_security(app, settings)

    for module in (
        health,
        auth,
        users,
        proposals,
        proposal_reviewers,
        evaluations,
        notifications,
    ):
        app.include_router(module.router)

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
