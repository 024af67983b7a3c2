"""Domain errors raised by the services and rendered by the API.

Each error carries a machine-readable ``code``, a message that is safe to
show to an unauthenticated visitor, and the HTTP status the API maps it to.
"""
from __future__ import annotations


class ServiceError(Exception):
    code = "error"
    status_code = 500
    default_message = "Something went wrong"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(ServiceError):
    code = "validation_error"
    status_code = 422
    default_message = "Invalid request"


class NotFound(ServiceError):
    code = "not_found"
    status_code = 404
    default_message = "Not found"


class TokenNotFound(NotFound):
    code = "token_not_found"
    status_code = 400
    default_message = "Invalid link. Please request a new one."


class InvalidToken(NotFound):
    code = "invalid_token"
    status_code = 400
    default_message = "This confirmation link is invalid."


class AlreadyUsed(ServiceError):
    code = "already_used"
    status_code = 400
    default_message = "This link was already used. Please request a new one."


class TokenAlreadyUsed(AlreadyUsed):
    code = "token_used"


class Expired(ServiceError):
    code = "expired"
    status_code = 400
    default_message = "This link has expired. Please request a new one."


class TokenExpired(Expired):
    code = "token_expired"


class LinkExpired(Expired):
    code = "link_expired"
    status_code = 410


class OutcomeAlreadyReported(ServiceError):
    code = "outcome_already_reported"
    status_code = 409
    default_message = "An outcome has already been recorded for this entry"

    def __init__(self, outcome: str | None = None, message: str | None = None):
        self.outcome = outcome
        super().__init__(message)


class AttemptWindowClosed(ServiceError):
    code = "attempt_window_closed"
    status_code = 409
    default_message = "The attempt window has closed"


class InvalidTransition(ServiceError):
    code = "invalid_transition"
    status_code = 409
    default_message = "This claim cannot move to the requested state"


class StoreFailure(ServiceError):
    code = "store_failure"
    status_code = 503
    default_message = "Temporarily unable to save. Please try again."


class DeliveryFailure(ServiceError):
    code = "delivery_failure"
    status_code = 502
    default_message = "The email could not be sent"
