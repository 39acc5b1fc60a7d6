class FinanceError(Exception):
    """Base class for errors surfaced to API callers.

    ``code`` names the error kind and ``status_code`` is the HTTP status the
    API layer answers with. None of these are retried by the core.
    """

    code = "internal"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidArgument(FinanceError, ValueError):
    code = "invalid_argument"
    status_code = 400


class NotFound(FinanceError, ValueError):
    code = "not_found"
    status_code = 404


class AlreadyExists(FinanceError, ValueError):
    code = "already_exists"
    status_code = 409


class FailedPrecondition(FinanceError, ValueError):
    code = "failed_precondition"
    status_code = 400


class InternalError(FinanceError):
    code = "internal"
    status_code = 500
