"""
Exception hierarchy shared by the stores, services and the HTTP layer.

Services raise these; `api.py` turns each one into a JSON error response
with the matching status code.
"""


class FambudgetError(Exception):
    """Base class for all domain errors."""

    status_code = 500

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class ValidationError(FambudgetError):
    """Bad input, rejected before anything is written."""

    status_code = 400


class NotFoundError(FambudgetError):
    status_code = 404

    def __init__(self, entity, entity_id):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class AuthenticationError(FambudgetError):
    status_code = 401


class PermissionDeniedError(FambudgetError):
    status_code = 403


class ConflictError(FambudgetError):
    status_code = 409


class ConsistencyError(FambudgetError):
    """A multi-step ledger write could not be completed; the unit of work rolls back."""

    status_code = 500


class PoolExhaustedError(FambudgetError):
    status_code = 503
