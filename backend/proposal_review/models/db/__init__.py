"""SQLAlchemy 2.0 ORM models for the proposal review service.

Import all models here so Alembic's ``env.py`` and
``Database.create_schema`` can discover them via::

    import proposal_review.models.db  # noqa: F401

Every model must be imported at module level to register with the
``DeclarativeBase`` metadata.
"""

from proposal_review.models.db.base import Base, TimestampMixin  # noqa: F401

from proposal_review.models.db.user import Department, User  # noqa: F401
from proposal_review.models.db.proposal import (  # noqa: F401
    Proposal,
    ProposalStatusHistory,
)
from proposal_review.models.db.assignment import ProposalReviewer  # noqa: F401
from proposal_review.models.db.evaluation import Evaluation  # noqa: F401
from proposal_review.models.db.project import Milestone, Project  # noqa: F401
from proposal_review.models.db.notification import Notification  # noqa: F401
