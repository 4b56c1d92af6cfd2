"""
Exception hierarchy for the NOOS planner.

Every error raised on purpose by the services derives from ``NoosError`` so
the API layer can render it with a single handler.
"""


class NoosError(Exception):
    """Base exception for NOOS planner errors."""

    status_code = 500

    def __init__(self, message=None, code=None, details=None):
        self.message = message or "An error occurred in the NOOS planner"
        self.code = code
        self.details = details
        super().__init__(self.message)

    def __str__(self):
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message

    def to_dict(self):
        """Convert the exception to a response body."""
        error_dict = {
            'error': self.__class__.__name__,
            'message': self.message,
        }

        if self.code:
            error_dict['code'] = self.code

        if self.details:
            error_dict['details'] = self.details

        return error_dict


class ValidationError(NoosError):
    """Malformed or inconsistent run parameters."""

    status_code = 400

    def __init__(self, message=None, code="VALIDATION_ERROR", details=None):
        message = message or "Validation error"
        super().__init__(message, code, details)


class NotFoundError(NoosError):
    """Requested entity does not exist."""

    status_code = 404

    def __init__(self, message=None, code="ENTITY_NOT_FOUND", details=None):
        message = message or "Resource not found"
        super().__init__(message, code, details)


class ConflictError(NoosError):
    """Operation not allowed in the entity's current state."""

    status_code = 409

    def __init__(self, message=None, code="OPERATION_NOT_ALLOWED", details=None):
        message = message or "Operation not allowed"
        super().__init__(message, code, details)


class ExecutorBusyError(NoosError):
    """A worker pool refused new work because its queue is full."""

    status_code = 429

    def __init__(self, message=None, code="SYSTEM_BUSY", details=None):
        message = message or "System is busy. Too many concurrent tasks. Please try again later."
        super().__init__(message, code, details)


class TaskCancelledError(NoosError):
    """Raised inside a run when cancellation has been requested."""

    def __init__(self, message=None, code="CANCELLED", details=None):
        message = message or "Task was cancelled by user"
        super().__init__(message, code, details)


class DataError(NoosError):
    """The sales data cannot support a run, e.g. the analysis window is empty."""

    status_code = 422

    def __init__(self, message=None, code="DATA_ERROR", details=None):
        message = message or "Data error"
        super().__init__(message, code, details)
