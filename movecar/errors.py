"""
Error taxonomy for the move-car service.

Every error carries a machine-readable code, a human-readable message and the
HTTP status it maps to. The API layer renders them as the standard
``{success: false, error, code}`` envelope.
"""

from typing import Optional


class MoveCarError(Exception):
    """Base exception for all service errors."""

    def __init__(self, code: str, message: str, status_code: int = 500):
        self.code = code
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class ValidationError(MoveCarError):
    """Raised when input is missing or malformed."""

    def __init__(self, message: str, code: str = "VALIDATION_ERROR"):
        super().__init__(code=code, message=message, status_code=400)


class BindingMissingError(ValidationError):
    """Raised when an Owner has no linked user account."""

    def __init__(self, message: str = "Owner has no linked account, phone number unavailable"):
        super().__init__(message=message, code="BINDING_MISSING")


class DuplicatePhoneError(MoveCarError):
    """Raised when registering a phone number that already has an account."""

    def __init__(self, message: str = "This phone number is already registered"):
        super().__init__(code="PHONE_EXISTS", message=message, status_code=409)


class AuthError(MoveCarError):
    """Raised when a token or credential is missing or invalid."""

    def __init__(self, message: str = "Authentication required", code: str = "UNAUTHORIZED"):
        super().__init__(code=code, message=message, status_code=401)


class ForbiddenError(MoveCarError):
    """Raised when a presented token does not grant access."""

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(code="FORBIDDEN", message=message, status_code=403)


class NotFoundError(MoveCarError):
    """Raised when an identifier does not resolve to a stored record."""

    def __init__(self, resource: str, resource_id: Optional[str] = None):
        if resource_id:
            message = f"{resource} '{resource_id}' not found"
        else:
            message = f"{resource} not found"
        super().__init__(code="NOT_FOUND", message=message, status_code=404)


class InvalidStateError(MoveCarError):
    """Raised when a transition is not allowed from the current state."""

    def __init__(self, message: str):
        super().__init__(code="INVALID_STATE", message=message, status_code=409)


class ConfigurationError(MoveCarError):
    """Raised when push configuration is missing or does not match the channel."""

    def __init__(self, message: str):
        super().__init__(code="CONFIGURATION_ERROR", message=message, status_code=400)


class DispatchError(MoveCarError):
    """Raised inside the dispatcher when a provider call fails."""

    def __init__(self, message: str):
        super().__init__(code="DISPATCH_ERROR", message=message, status_code=502)


class StoreUnavailableError(MoveCarError):
    """Raised when the keyed store cannot complete an operation."""

    def __init__(self, message: str = "Storage temporarily unavailable", code: str = "STORE_UNAVAILABLE",
                 status_code: int = 500):
        super().__init__(code=code, message=message, status_code=status_code)


class IdGenerationExhaustedError(StoreUnavailableError):
    """Raised when no free identifier was found within the retry cap."""

    def __init__(self, namespace: str, attempts: int):
        super().__init__(
            message=f"Could not allocate a unique {namespace} id after {attempts} attempts",
            code="ID_GENERATION_EXHAUSTED",
            status_code=503,
        )
