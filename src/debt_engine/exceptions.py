"""Exception hierarchy for the debt engine."""

from typing import Optional


class DebtEngineError(Exception):
    """Base exception for all debt engine errors."""

    error_code = "ERR_500"

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if error_code is not None:
            self.error_code = error_code


class ExternalServiceError(DebtEngineError):
    """The external ledger is unreachable or answered with an unrecoverable fault."""

    error_code = "ERR_502"

    def __init__(self, service_name: str, message: str):
        super().__init__(f"{service_name}: {message}")
        self.service_name = service_name


class ValidationError(DebtEngineError):
    """Malformed input such as a blank trigger source or an unparsable row."""

    error_code = "ERR_400"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class DuplicateRecordError(DebtEngineError):
    """A record with the same identity is already stored."""

    error_code = "ERR_409"

    def __init__(self, message: str, unique_code: Optional[str] = None):
        super().__init__(message)
        self.unique_code = unique_code


class JobQueueFullError(DebtEngineError):
    """The job worker pool and its queue are saturated; retry later."""

    error_code = "ERR_503"
