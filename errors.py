"""
Error types raised by the marketplace services.

Each error carries the HTTP status and a stable code so the API layer can
render it as {"success": false, "message": ..., "error": code}.
"""


class MarketplaceError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(MarketplaceError):
    status_code = 400
    code = "VALIDATION_ERROR"


class ConfigurationError(ValidationError):
    code = "CONFIGURATION_ERROR"


class InvalidStateError(MarketplaceError):
    status_code = 400
    code = "INVALID_STATE"


class ConflictError(InvalidStateError):
    status_code = 409
    code = "CONFLICT"


class UnauthorizedError(MarketplaceError):
    status_code = 401
    code = "UNAUTHORIZED"


class ForbiddenError(MarketplaceError):
    status_code = 403
    code = "FORBIDDEN"


class NotFoundError(MarketplaceError):
    status_code = 404
    code = "NOT_FOUND"


class ServiceUnavailableError(MarketplaceError):
    status_code = 503
    code = "SERVICE_UNAVAILABLE"
