"""
Domain errors for the election service.

Every failure the core can produce is one of these. The HTTP layer turns them
into a stable ``{"code", "message", "details"}`` envelope, so the core itself
never builds HTTP responses.

Usage:
    from errors import NotFoundError

    election = db.elections.find_one({"_id": election_id})
    if not election:
        raise NotFoundError("Election not found")
"""

from typing import Any, Dict, Optional


class VotingError(Exception):
    """Base exception for all domain errors"""

    status_code = 500

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


class NotFoundError(VotingError):
    """Entity is absent"""

    status_code = 404

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="NOT_FOUND", details=details)


class PreconditionFailedError(VotingError):
    """Entity exists but is in the wrong state for this operation"""

    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="PRECONDITION_FAILED", details=details)


class ValidationFailedError(VotingError):
    """Malformed or incomplete input; details name the offending ids"""

    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="VALIDATION_FAILED", details=details)


class ConflictError(VotingError):
    """Uniqueness violation reported by the datastore"""

    status_code = 409

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="CONFLICT", details=details)


class AlreadyVotedError(ConflictError):
    """A ballot already exists for this voter in this election"""

    def __init__(self, election_id: str):
        super().__init__(
            "You have already voted in this election.",
            details={"election_id": election_id}
        )
        self.code = "ALREADY_VOTED"


class ForbiddenError(VotingError):
    """Role or ownership mismatch"""

    status_code = 403

    def __init__(self, message: str = "Forbidden", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="FORBIDDEN", details=details)


class AuthenticationError(VotingError):
    """Missing, invalid or expired credentials"""

    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, code="UNAUTHORIZED")


class RateLimitedError(VotingError):
    """Caller must wait before retrying"""

    status_code = 429

    def __init__(self, message: str, retry_after_seconds: int):
        super().__init__(
            message,
            code="RATE_LIMITED",
            details={"retry_after_seconds": retry_after_seconds}
        )
