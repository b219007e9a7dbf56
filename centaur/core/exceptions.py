"""
Custom Exceptions

Centralized exception definitions. Every domain failure is an
HTTPException subclass so services can raise directly and FastAPI
turns them into responses.

Status code conventions:
- 400 InvalidInputError: malformed or out-of-range input
- 403 PermissionDenied / TransactionBlockedError: caller may not do this
- 404 *NotFoundError: missing, or not visible to the caller's foundry
- 409 ConflictError: duplicate row (second RFQ response, second timesheet)
- 422 BusinessRuleError: the entity is in the wrong state for the action
"""
from fastapi import HTTPException, status


class NotFoundError(HTTPException):
    """Base for missing entities."""

    entity = "Record"
    error_type = "not_found"

    def __init__(self, identifier: str = ""):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{self.entity} not found: {identifier}" if identifier else f"{self.entity} not found"
        )


class FoundryNotFoundError(NotFoundError):
    entity = "Foundry"


class UserNotFoundError(NotFoundError):
    entity = "User"


class ProviderNotFoundError(NotFoundError):
    entity = "Provider profile"


class RFQNotFoundError(NotFoundError):
    entity = "RFQ"


class RFQResponseNotFoundError(NotFoundError):
    entity = "Response"


class RetainerNotFoundError(NotFoundError):
    entity = "Retainer"


class TimesheetNotFoundError(NotFoundError):
    entity = "Timesheet"


class ObjectiveNotFoundError(NotFoundError):
    entity = "Objective"


class TaskNotFoundError(NotFoundError):
    entity = "Task"


class OrderNotFoundError(NotFoundError):
    entity = "Order"


class FraudSignalNotFoundError(NotFoundError):
    entity = "Signal"


class AuthenticationError(HTTPException):
    """Raised when authentication fails."""

    error_type = "authentication_error"

    def __init__(self, detail: str = "Could not validate credentials"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class FoundryIsolationError(HTTPException):
    """
    Raised when a foundry isolation violation is detected.

    This is a CRITICAL security error and should be logged/alerted on.
    """

    error_type = "foundry_isolation_error"

    def __init__(self, detail: str = "Foundry isolation violation"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail
        )


class PermissionDenied(HTTPException):
    """Caller is authenticated but not allowed to perform the action."""

    error_type = "permission_denied"

    def __init__(self, detail: str = "Not authorized"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail
        )


class RateLimitExceeded(HTTPException):
    """Raised when rate limit is exceeded."""

    error_type = "rate_limit_exceeded"

    def __init__(self, retry_after: int = 60):
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Rate limit exceeded. Please try again later.",
            headers={"Retry-After": str(retry_after)}
        )


class InvalidInputError(HTTPException):
    """Raised when input validation fails."""

    error_type = "invalid_input"

    def __init__(self, detail: str = "Invalid input"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail
        )


class ConflictError(HTTPException):
    """A uniqueness rule was violated."""

    error_type = "conflict"

    def __init__(self, detail: str = "Conflict"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail
        )


class BusinessRuleError(HTTPException):
    """The target is in a state that does not allow the action."""

    error_type = "business_rule_violation"

    def __init__(self, detail: str):
        super().__init__(
            status_code=422,
            detail=detail
        )


class TransactionBlockedError(HTTPException):
    """Fraud detection or velocity limits refused a transaction."""

    error_type = "transaction_blocked"

    def __init__(self, detail: str = "Transaction blocked due to suspicious activity. Please contact support."):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail
        )
