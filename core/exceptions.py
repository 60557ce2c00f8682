"""
Custom exception classes and error handling.

Provides consistent error responses across the API. Domain failures of the
invite/attempt flow are permanent business states: callers must not retry
them automatically.
"""
from fastapi import HTTPException, status
from typing import Optional, Dict, Any


class APIException(HTTPException):
    """Base API exception with consistent structure."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code


class NotFoundError(APIException):
    """Resource not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} not found: {identifier}",
            error_code="NOT_FOUND"
        )


class ValidationError(APIException):
    """Validation error. Raised before any write, so nothing is partially applied."""

    def __init__(self, detail: str, field: Optional[str] = None):
        error_code = f"VALIDATION_ERROR_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
            error_code=error_code
        )


class UnauthorizedError(APIException):
    """Authentication required."""

    def __init__(self, detail: str = "Authentication required"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="UNAUTHORIZED",
            headers={"WWW-Authenticate": "Bearer"}
        )


class ForbiddenError(APIException):
    """Access denied."""

    def __init__(self, detail: str = "Access denied"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            error_code="FORBIDDEN"
        )


class ConflictError(APIException):
    """Resource conflict (e.g., duplicate entry, stale write)."""

    def __init__(self, detail: str, error_code: str = "CONFLICT"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            error_code=error_code
        )


# ---------------------------------------------------------------------------
# Invite / attempt flow
# ---------------------------------------------------------------------------

class InviteInvalidError(APIException):
    """Token does not resolve to any invite."""

    def __init__(self, detail: str = "Invite link is invalid"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code="INVITE_INVALID"
        )


class InviteExpiredOrCompletedError(APIException):
    """Invite status is outside the caller's allow-list (or past expires_at)."""

    def __init__(self, detail: str = "Invite has expired or is already completed"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code="INVITE_EXPIRED_OR_COMPLETED"
        )


class AttemptNotFoundError(APIException):
    """Attempt does not exist for this invite. Treated as forbidden access."""

    def __init__(self, attempt_id: Any = None):
        detail = "Attempt not found" if attempt_id is None else f"Attempt not found: {attempt_id}"
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
            error_code="ATTEMPT_NOT_FOUND"
        )


class AttemptAlreadySubmittedError(APIException):
    """Attempt has a submission timestamp; answers are frozen."""

    def __init__(self, detail: str = "Attempt already submitted"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code="ATTEMPT_ALREADY_SUBMITTED"
        )
