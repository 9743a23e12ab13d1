from typing import Optional


class PhotoboothError(Exception):
    """Base class for errors raised by the video task lifecycle."""


class ValidationError(PhotoboothError):
    """Bad model, resolution or missing field. Rejected synchronously, never retried."""


class UpstreamError(PhotoboothError):
    """The provider or the ledger answered with an HTTP failure."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_client_error(self) -> bool:
        return self.status_code is not None and 400 <= self.status_code < 500

    @property
    def is_retryable(self) -> bool:
        return self.status_code is None or self.status_code >= 500 or self.status_code == 429


class ConflictError(PhotoboothError):
    """A compare-and-set precondition did not hold: another actor won the race."""

    def __init__(self, message: str = "Status mismatch", current: Optional[str] = None):
        super().__init__(message)
        self.current = current


class DataIntegrityError(PhotoboothError):
    """Row not found or stored payload malformed."""
