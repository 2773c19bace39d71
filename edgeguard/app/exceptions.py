"""Custom exceptions for the edge filter."""


class EdgeGuardException(Exception):
    """Base class for edge filter exceptions with HTTP status code.

    None of these ever reach the client: the filter only answers 403, 429
    or passes the request through. The status code is kept for logging and
    for callers embedding the components elsewhere.
    """
    status_code: int = 500

    def __init__(self, message: str = "Edge filter error"):
        self.message = message
        super().__init__(message)


class StoreError(EdgeGuardException):
    """Raised when a shared store call fails or times out.

    Maps to HTTP 503 Service Unavailable.
    """
    status_code = 503

    def __init__(self, operation: str, detail: str | None = None):
        self.operation = operation
        message = f"Store operation '{operation}' failed"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class NotificationError(EdgeGuardException):
    """Raised when an alert could not be delivered to the notification channel.

    Maps to HTTP 502 Bad Gateway.
    """
    status_code = 502

    def __init__(self, detail: str = "Notification delivery failed", status: int | None = None):
        self.detail = detail
        self.status = status
        super().__init__(detail)
