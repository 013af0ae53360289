class HelpdeskError(Exception):
    """Base error for ticket operations. Carries the HTTP status the API answers with."""
    status_code = 400

    def __init__(self, message=None, **details):
        super().__init__(message or self.__doc__)
        self.message = message or self.__doc__
        self.details = details

    def to_dict(self):
        out = {'error': self.message}
        out.update(self.details)
        return out


class Forbidden(HelpdeskError):
    """forbidden"""
    status_code = 403


class NotFound(HelpdeskError):
    """not found"""
    status_code = 404


class TicketNotFound(NotFound):
    """ticket not found"""


class ValidationFailed(HelpdeskError):
    """validation failed"""
    status_code = 400

    def __init__(self, message=None, errors=None):
        super().__init__(message, errors=errors or {})
        self.errors = errors or {}


class InvalidTransition(HelpdeskError):
    """status transition not allowed"""
    status_code = 409


class StoreError(HelpdeskError):
    """store unavailable"""
    status_code = 503

    def __init__(self, message=None):
        super().__init__(message, retryable=True)
