"""
core/errors.py -- Error taxonomy shared by every layer of CarLot.

Each error carries the HTTP status it maps to and a stable machine-readable
code. Route handlers raise these; the exception handlers in api/main.py turn
them into responses, so no handler builds an error response by hand for a
failure it cannot recover from.

  ValidationError     400  bad or missing input, field-level messages
  ConflictError       400  duplicate email at registration
  CredentialError     401  login failure, one message for every cause
  AuthorizationError  403  role insufficient or identity absent
  NotFoundError       404  referenced record does not exist
  DependencyError     500  store, hashing, or mail failure (incl. timeout)

Layer rule: core/ is the kernel. No imports from api/, web/, auth/,
inventory/, or notify/.
"""

from __future__ import annotations


class CarLotError(Exception):
    """Base class for every error the request boundary knows how to map."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(CarLotError):
    """Input failed shape validation. Nothing was written.

    field_errors maps a form field name to a human-readable message so forms
    can render the error next to the offending input.
    """

    status_code = 400
    code = "validation_error"
    default_message = "Request validation failed."

    def __init__(self, field_errors: dict[str, str], message: str | None = None) -> None:
        super().__init__(message)
        self.field_errors = dict(field_errors)


class ConflictError(CarLotError):
    status_code = 400
    code = "conflict"
    default_message = "An account with that email already exists."


class CredentialError(CarLotError):
    status_code = 401
    code = "bad_credentials"
    default_message = "Invalid email or password."


class AuthorizationError(CarLotError):
    # The message never says why; callers learn nothing about which role
    # would have been sufficient.
    status_code = 403
    code = "forbidden"
    default_message = "Unauthorized"


class NotFoundError(CarLotError):
    status_code = 404
    code = "not_found"
    default_message = "Not found."


class DependencyError(CarLotError):
    status_code = 500
    code = "dependency_error"
    default_message = "A backing service failed to complete the request."


StoreError = DependencyError
