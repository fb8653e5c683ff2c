"""
Error taxonomy shared by services and routes.

Every error carries the HTTP status it is rendered with; the exception
handlers in main.py turn them into ``{"success": false, "message": ...}``.
"""


class QAError(Exception):
    http_status = 500

    def __init__(self, message: str, http_status: int = None):
        super().__init__(message)
        self.message = message
        if http_status is not None:
            self.http_status = http_status


class ValidationError(QAError):
    """Missing or malformed required input."""

    http_status = 400

    def __init__(self, message: str, field: str = None):
        super().__init__(message)
        self.field = field


class NotFoundError(QAError):
    http_status = 404


class ConfigurationError(QAError):
    """Feature disabled or credential missing. Not a transient failure."""

    http_status = 400


class NoRecipientsError(ConfigurationError):
    pass


class ExternalServiceError(QAError):
    """LINE API returned non-2xx or the network call failed."""

    http_status = 502

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class PersistenceError(QAError):
    http_status = 500


class ConcurrentUpdateError(PersistenceError):
    """A versioned document kept changing underneath a write."""

    pass
