"""
Error taxonomy for the protocol adapter
"""
from typing import Any, Dict, Optional


class ProtocolError(Exception):
    """Base class for errors surfaced to network participants"""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"
    # Client faults keep their message, server faults are sanitized
    public_message: Optional[str] = None

    def __init__(self, message: str, metadata: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.metadata = metadata or {}

    @property
    def is_client_fault(self) -> bool:
        return 400 <= self.status_code < 500

    def safe_message(self) -> str:
        """Message that may be returned to the caller"""
        if self.is_client_fault:
            return self.message
        return self.public_message or "Internal Server Error"

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary"""
        return {
            "statusCode": self.status_code,
            "code": self.code,
            "message": self.safe_message(),
        }


class ValidationError(ProtocolError):
    """Missing or malformed required protocol field"""
    status_code = 400
    code = "VALIDATION_ERROR"


class NotFoundError(ProtocolError):
    """Benefit, application or order is absent"""
    status_code = 404
    code = "NOT_FOUND"


class AuthorizationError(ProtocolError):
    """Caller's role or provider scope does not cover the record"""
    status_code = 403
    code = "FORBIDDEN"


class UpstreamError(ProtocolError):
    """Content provider or identity store failed"""
    status_code = 502
    code = "UPSTREAM_ERROR"
    public_message = "Upstream service error"


class TransformError(ProtocolError):
    """A catalog shape invariant was violated while building a response"""
    status_code = 500
    code = "TRANSFORM_ERROR"
    public_message = "Failed to build protocol response"


class PartialBatchFailure(ProtocolError):
    """One item of a best-effort batch failed; the batch carries on"""
    status_code = 500
    code = "PARTIAL_BATCH_FAILURE"

    def __init__(self, item_id: Any, cause: Exception):
        super().__init__(f"Failed to process {item_id}: {cause}", {"item_id": item_id})
        self.item_id = item_id
        self.cause = cause
