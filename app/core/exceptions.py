from typing import Optional


class CloningError(Exception):
    """Base exception for errors raised by the page-cloning service."""
    pass


class ProgressStoreError(CloningError):
    """
    Raised by the ProgressStore when a record cannot be found, written or
    validated.

    `code` is one of: not_found, already_exists, parse_error, write_error,
    validation_error.
    """
    def __init__(self, message: str, code: str, retryable: bool = False):
        super().__init__(message)
        self.code = code
        self.retryable = retryable


class PreconditionError(CloningError):
    """Raised when an operation is attempted before what it depends on exists."""
    pass


class OrchestratorStateError(CloningError):
    """Raised when phase work is requested while the clone is halted."""
    pass


class CloneCancelledError(CloningError):
    """Raised at a suspension point once the clone's cancellation token is set."""
    pass


class CaptureError(CloningError):
    """
    Raised by page sources when a page cannot be captured. The message carries
    the HTTP status line when one is available so that classification can work
    from text alone.
    """
    def __init__(self, message: str, status_code: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.url = url
