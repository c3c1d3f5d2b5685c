"""
Error taxonomy for the identity pipeline

Every error carries the HTTP status code the API layer answers with, so
handlers never need to know about individual error types.
"""

from typing import Any, Dict, Optional


class IdentityMatrixError(Exception):
    """Base class for all pipeline errors"""
    status_code = 500
    error_type = "SYSTEM_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(IdentityMatrixError):
    """Input failed a format or value check"""
    status_code = 422
    error_type = "VALIDATION_ERROR"


class ConsentRequired(IdentityMatrixError):
    """GDPR consent missing for an operation that stores identifying data"""
    status_code = 403
    error_type = "CONSENT_REQUIRED"


class RateLimited(IdentityMatrixError):
    """Per-key quota exhausted for the current window"""
    status_code = 429
    error_type = "RATE_LIMIT_ERROR"


class NotFound(IdentityMatrixError):
    """Requested visitor does not exist"""
    status_code = 404
    error_type = "RESOURCE_ERROR"


class AllProvidersFailed(IdentityMatrixError):
    """No enrichment provider produced a result"""
    status_code = 502
    error_type = "INTEGRATION_ERROR"


class TransientStoreError(IdentityMatrixError):
    """Cache or counter backend temporarily unavailable"""
    status_code = 503
    error_type = "CACHE_ERROR"
