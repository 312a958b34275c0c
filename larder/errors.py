"""Domain errors raised by the stock, reservation and planning services.

Each error carries the HTTP status and machine code the API layer answers
with; the services themselves never build responses.
"""


class DomainError(Exception):
    status_code = 400
    code = "DOMAIN_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(DomainError):
    status_code = 422
    code = "VALIDATION_ERROR"


class InsufficientStock(DomainError):
    """A movement would drive a lot below zero or below its reserved total."""
    status_code = 409
    code = "INSUFFICIENT_STOCK"


class InsufficientAvailableStock(DomainError):
    """Eligible lots of a product cannot cover a reservation request."""
    status_code = 409
    code = "INSUFFICIENT_AVAILABLE_STOCK"


class ConflictError(DomainError):
    status_code = 409
    code = "CONFLICT"


class NotFound(DomainError):
    status_code = 404
    code = "NOT_FOUND"


class WriteConflict(ConflictError):
    """Another transaction changed a row we read; the unit of work may be retried."""
