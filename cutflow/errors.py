"""Exceptions raised by the scheduling and settlement services.

Each class carries the HTTP status the API answers with; ``details`` holds
whatever a human needs to act on the error (which batch, which date).
"""


class CutflowError(Exception):
    status_code = 500

    def __init__(self, message, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        payload = {"success": False, "error": self.message}
        payload.update(self.details)
        return payload


class ValidationError(CutflowError):
    status_code = 400


class NotFoundError(CutflowError):
    status_code = 404


class ConflictError(CutflowError):
    status_code = 409


class PersistenceError(CutflowError):
    status_code = 500
