"""Enumerations shared by ORM models, schemas and services."""

from enum import Enum


class Role(str, Enum):
    ADMIN = "ADMIN"
    PROJECT_MANAGER = "PROJECT_MANAGER"
    PRINCIPAL_INVESTIGATOR = "PRINCIPAL_INVESTIGATOR"
    REVIEWER = "REVIEWER"
    COMMITTEE_CHAIR = "COMMITTEE_CHAIR"
    DEPARTMENT_HEAD = "DEPARTMENT_HEAD"
    FINANCIAL_OFFICER = "FINANCIAL_OFFICER"
    STAKEHOLDER = "STAKEHOLDER"


class ProposalStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    UNDER_REVIEW = "UNDER_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    WITHDRAWN = "WITHDRAWN"


class AssignmentStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    # Declared for compatibility; overdue assignments are a computed view
    OVERDUE = "OVERDUE"


class Recommendation(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    MINOR_REVISIONS = "MINOR_REVISIONS"
    MAJOR_REVISIONS = "MAJOR_REVISIONS"


class ProjectType(str, Enum):
    RESEARCH = "RESEARCH"
    DEVELOPMENT = "DEVELOPMENT"
    EDUCATION = "EDUCATION"
    SERVICE = "SERVICE"


class PriorityLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class NotificationKind(str, Enum):
    EVALUATION_ASSIGNED = "EVALUATION_ASSIGNED"
    EVALUATION_RECEIVED = "EVALUATION_RECEIVED"
    PROPOSAL_SUBMITTED = "PROPOSAL_SUBMITTED"
    PROPOSAL_STATUS_CHANGED = "PROPOSAL_STATUS_CHANGED"
