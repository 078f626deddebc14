"""Domain Errors - Centralized Exception Hierarchy"""
from typing import Any, Dict, List, Optional


class DomainError(Exception):
    """Base domain error - all errors extend this"""

    error_code: str = "DOMAIN_ERROR"
    http_status: int = 400

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to API response dict"""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.details
            }
        }


# Authorization Errors
class AuthorizationError(DomainError):
    """Caller or service account lacks access"""
    error_code = "AUTHORIZATION_ERROR"
    http_status = 403


class PermissionDeniedError(AuthorizationError):
    """Store rejected access to a collection"""
    error_code = "PERMISSION_DENIED"


# Validation Errors
class ValidationError(DomainError):
    """Input validation failed"""
    error_code = "VALIDATION_ERROR"
    http_status = 400


# Not Found Errors
class NotFoundError(DomainError):
    """Resource not found"""
    error_code = "NOT_FOUND"
    http_status = 404


class IdentityNotFoundError(NotFoundError):
    """No active staff record matches the reference"""
    error_code = "IDENTITY_NOT_RECOGNIZED"


class JobNotFoundError(NotFoundError):
    """Job not found in any job collection"""
    error_code = "JOB_NOT_FOUND"


class NotificationNotFoundError(NotFoundError):
    """Notification event not found for this identity"""
    error_code = "NOTIFICATION_NOT_FOUND"


class AuditReportNotFoundError(NotFoundError):
    """Audit report not found"""
    error_code = "AUDIT_REPORT_NOT_FOUND"


# Conflict Errors
class ConflictError(DomainError):
    """Resource conflict"""
    error_code = "CONFLICT"
    http_status = 409


class AmbiguousIdentityError(ConflictError):
    """
    More than one active staff record maps to the same identity.

    Data integrity fault: never resolved automatically, needs an operator.
    """
    error_code = "AMBIGUOUS_IDENTITY"


class DuplicateEventError(ConflictError):
    """Notification event id already written - safe no-op on retry"""
    error_code = "DUPLICATE_EVENT"


class InvalidStateError(ConflictError):
    """Action not valid for current state"""
    error_code = "INVALID_STATE"


# Availability Errors
class PartialAvailabilityError(DomainError):
    """
    Some collections answered, others were restricted.

    Carries whatever data was fetched so callers can still render it.
    """
    error_code = "PARTIAL_AVAILABILITY"
    http_status = 200

    def __init__(
        self,
        message: str,
        succeeded: List[str],
        failed: List[str],
        jobs: Optional[List[Any]] = None,
    ):
        super().__init__(message, details={"succeeded": succeeded, "failed": failed})
        self.succeeded = succeeded
        self.failed = failed
        self.jobs = jobs or []


class OperationTimeoutError(DomainError):
    """Store or generator call timed out after retries (transient)"""
    error_code = "TIMEOUT"
    http_status = 504


# External Service Errors
class ExternalServiceError(DomainError):
    """External service failure"""
    error_code = "EXTERNAL_SERVICE_ERROR"
    http_status = 502


class OpenAIError(ExternalServiceError):
    """Azure OpenAI API error"""
    error_code = "OPENAI_ERROR"
