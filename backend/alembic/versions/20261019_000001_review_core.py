"""Create the proposal review core tables.

departments, users, proposals, proposal_status_history, proposal_reviewers,
evaluations, projects, milestones, notifications.

Revision ID: 0001_review_core
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision: str = "0001_review_core"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ROLES = (
    "ADMIN",
    "PROJECT_MANAGER",
    "PRINCIPAL_INVESTIGATOR",
    "REVIEWER",
    "COMMITTEE_CHAIR",
    "DEPARTMENT_HEAD",
    "FINANCIAL_OFFICER",
    "STAKEHOLDER",
)
PROPOSAL_STATUSES = (
    "DRAFT",
    "SUBMITTED",
    "UNDER_REVIEW",
    "APPROVED",
    "REJECTED",
    "WITHDRAWN",
)
ASSIGNMENT_STATUSES = ("PENDING", "IN_PROGRESS", "COMPLETED", "OVERDUE")
RECOMMENDATIONS = ("APPROVE", "REJECT", "MINOR_REVISIONS", "MAJOR_REVISIONS")


def _in(column: str, values: Sequence[str], nullable: bool = False) -> str:
    clause = f"{column} IN ({', '.join(repr(v) for v in values)})"
    return f"{clause} OR {column} IS NULL" if nullable else clause


def _id() -> sa.Column:
    return sa.Column(
        "id", UUID(), server_default=sa.text("gen_random_uuid()"), primary_key=True
    )


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    # --- departments ---
    op.create_table(
        "departments",
        _id(),
        sa.Column("name", sa.Text(), nullable=False, unique=True),
        sa.Column("code", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default="true", nullable=False),
        *_timestamps(),
    )

    # --- users ---
    op.create_table(
        "users",
        _id(),
        sa.Column("username", sa.Text(), nullable=False, unique=True),
        sa.Column("email", sa.Text(), nullable=False, unique=True),
        sa.Column("password_hash", sa.Text(), nullable=False),
        sa.Column("first_name", sa.Text(), nullable=True),
        sa.Column("last_name", sa.Text(), nullable=True),
        sa.Column("role", sa.String(32), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default="true", nullable=False),
        sa.Column(
            "department_id",
            UUID(),
            sa.ForeignKey("departments.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("phone_number", sa.Text(), nullable=True),
        sa.Column("office_location", sa.Text(), nullable=True),
        sa.Column("expertise_areas", sa.Text(), nullable=True),
        sa.Column("last_login", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(_in("role", ROLES), name="users_role_check"),
    )

    # --- proposals ---
    op.create_table(
        "proposals",
        _id(),
        sa.Column(
            "principal_investigator_id",
            UUID(),
            sa.ForeignKey("users.id"),
            nullable=False,
        ),
        sa.Column("created_by_id", UUID(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "department_id", UUID(), sa.ForeignKey("departments.id"), nullable=False
        ),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("abstract", sa.Text(), nullable=True),
        sa.Column("co_investigators", sa.Text(), nullable=True),
        sa.Column("project_type", sa.String(32), nullable=False),
        sa.Column("funding_agency", sa.Text(), nullable=True),
        sa.Column("requested_amount", sa.Numeric(15, 2), nullable=True),
        sa.Column("project_duration_months", sa.Integer(), nullable=True),
        sa.Column("submission_deadline", sa.Date(), nullable=True),
        sa.Column(
            "priority_level", sa.String(32), server_default="MEDIUM", nullable=False
        ),
        sa.Column("status", sa.String(32), server_default="DRAFT", nullable=False),
        sa.Column("submission_date", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            _in("status", PROPOSAL_STATUSES), name="proposals_status_check"
        ),
    )
    op.create_index("idx_proposals_pi", "proposals", ["principal_investigator_id"])
    op.create_index("idx_proposals_department", "proposals", ["department_id"])
    op.create_index("idx_proposals_status", "proposals", ["status"])

    # --- proposal_status_history ---
    op.create_table(
        "proposal_status_history",
        _id(),
        sa.Column(
            "proposal_id",
            UUID(),
            sa.ForeignKey("proposals.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("old_status", sa.String(32), nullable=True),
        sa.Column("new_status", sa.String(32), nullable=False),
        sa.Column("changed_by", UUID(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column(
            "changed_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index(
        "idx_status_history_proposal", "proposal_status_history", ["proposal_id"]
    )

    # --- proposal_reviewers ---
    op.create_table(
        "proposal_reviewers",
        _id(),
        sa.Column(
            "proposal_id",
            UUID(),
            sa.ForeignKey("proposals.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "reviewer_id",
            UUID(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("assigned_by_id", UUID(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("status", sa.String(32), server_default="PENDING", nullable=False),
        sa.Column("assigned_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.UniqueConstraint("proposal_id", "reviewer_id", name="uq_proposal_reviewer"),
        sa.CheckConstraint(
            _in("status", ASSIGNMENT_STATUSES), name="proposal_reviewers_status_check"
        ),
    )
    op.create_index("idx_proposal_reviewers_proposal", "proposal_reviewers", ["proposal_id"])
    op.create_index("idx_proposal_reviewers_reviewer", "proposal_reviewers", ["reviewer_id"])

    # --- evaluations ---
    op.create_table(
        "evaluations",
        _id(),
        sa.Column(
            "proposal_id",
            UUID(),
            sa.ForeignKey("proposals.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("reviewer_id", UUID(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("evaluation_stage", sa.Text(), nullable=True),
        # Scores
        sa.Column("overall_score", sa.Numeric(4, 2), nullable=True),
        sa.Column("technical_score", sa.Numeric(4, 2), nullable=True),
        sa.Column("innovation_score", sa.Numeric(4, 2), nullable=True),
        sa.Column("feasibility_score", sa.Numeric(4, 2), nullable=True),
        sa.Column("budget_score", sa.Numeric(4, 2), nullable=True),
        sa.Column("impact_score", sa.Numeric(4, 2), nullable=True),
        sa.Column("comments", sa.Text(), nullable=True),
        sa.Column("recommendation", sa.String(32), nullable=True),
        sa.Column("evaluation_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_final", sa.Boolean(), server_default="false", nullable=False),
        sa.Column(
            "conflict_of_interest", sa.Boolean(), server_default="false", nullable=False
        ),
        *_timestamps(),
        sa.UniqueConstraint(
            "proposal_id", "reviewer_id", name="uq_evaluation_proposal_reviewer"
        ),
        sa.CheckConstraint(
            _in("recommendation", RECOMMENDATIONS, nullable=True),
            name="evaluations_recommendation_check",
        ),
    )
    op.create_index("idx_evaluations_proposal", "evaluations", ["proposal_id"])
    op.create_index("idx_evaluations_reviewer", "evaluations", ["reviewer_id"])

    # --- projects / milestones ---
    op.create_table(
        "projects",
        _id(),
        sa.Column(
            "proposal_id",
            UUID(),
            sa.ForeignKey("proposals.id"),
            nullable=True,
            unique=True,
        ),
        sa.Column(
            "principal_investigator_id",
            UUID(),
            sa.ForeignKey("users.id"),
            nullable=False,
        ),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        *_timestamps(),
    )
    op.create_table(
        "milestones",
        _id(),
        sa.Column(
            "project_id",
            UUID(),
            sa.ForeignKey("projects.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("is_completed", sa.Boolean(), server_default="false", nullable=False),
        *_timestamps(),
    )
    op.create_index("idx_milestones_project", "milestones", ["project_id"])

    # --- notifications ---
    op.create_table(
        "notifications",
        _id(),
        sa.Column(
            "user_id",
            UUID(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("kind", sa.String(32), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("payload", JSONB(), nullable=True),
        sa.Column("related_proposal_id", UUID(), nullable=True),
        sa.Column("is_read", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_notifications_user", "notifications", ["user_id"])
    op.create_index(
        "idx_notifications_proposal", "notifications", ["related_proposal_id"]
    )


def downgrade() -> None:
    for table in (
        "notifications",
        "milestones",
        "projects",
        "evaluations",
        "proposal_reviewers",
        "proposal_status_history",
        "proposals",
        "users",
        "departments",
    ):
        op.drop_table(table)
