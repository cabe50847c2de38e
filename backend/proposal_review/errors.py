"""Domain error hierarchy.

Services raise these; ``security.create_review_error_handler`` turns them
into JSON responses.  Each class pins its HTTP status and a stable
machine-readable ``code``.
"""

from typing import Optional


class ReviewError(Exception):
    """Base class for all domain errors."""

    status_code: int = 400
    code: str = "BAD_REQUEST"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# ---------------------------------------------------------------------------
# Authentication (401)
# ---------------------------------------------------------------------------


class Unauthenticated(ReviewError):
    status_code = 401
    code = "UNAUTHENTICATED"

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)


class InvalidToken(Unauthenticated):
    code = "INVALID_TOKEN"

    def __init__(self, message: str = "Invalid or expired token"):
        super().__init__(message)


class MalformedToken(InvalidToken):
    code = "MALFORMED_TOKEN"

    def __init__(self, message: str = "Malformed token"):
        super().__init__(message)


class AccountInactive(Unauthenticated):
    code = "ACCOUNT_INACTIVE"

    def __init__(self, message: str = "Account is deactivated"):
        super().__init__(message)


# ---------------------------------------------------------------------------
# Authorization / lookup
# ---------------------------------------------------------------------------


class Forbidden(ReviewError):
    status_code = 403
    code = "FORBIDDEN"

    def __init__(self, message: str = "Not authorized to perform this operation"):
        super().__init__(message)


class NotFound(ReviewError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: object = None):
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{resource} not found with id: {identifier}"
        super().__init__(message)
        self.resource = resource


# ---------------------------------------------------------------------------
# Business rule violations
# ---------------------------------------------------------------------------


class InvalidState(ReviewError):
    """A status transition is not legal from the entity's current status."""

    status_code = 409
    code = "INVALID_STATE"

    def __init__(self, message: str, current_state: Optional[str] = None):
        if current_state is not None:
            message = f"{message}. Current status: {current_state}"
        super().__init__(message)
        self.current_state = current_state


class InvalidOperation(ReviewError):
    code = "INVALID_OPERATION"


class InvalidRole(ReviewError):
    code = "INVALID_ROLE"


class Conflict(ReviewError):
    status_code = 409
    code = "CONFLICT"


class DuplicateAssignment(Conflict):
    code = "DUPLICATE_ASSIGNMENT"


class DuplicateEvaluation(Conflict):
    code = "DUPLICATE_EVALUATION"


class DuplicateResource(Conflict):
    code = "DUPLICATE_RESOURCE"
