"""
Basin Vault Client - Error Types

Every failure surfaces as a BasinError subclass. Nothing here is retried or
recovered: the caller (usually the CLI) reports the error and stops.
"""

from typing import Optional


class BasinError(Exception):
    """Base class for all client errors."""


class InvalidKeyFormat(BasinError):
    """Secret could not be parsed into a secp256k1 private key."""


class KeyDerivationError(BasinError):
    """Public key / account address could not be derived from a key."""


class FileIOError(BasinError):
    """Local file could not be opened, read or written."""


class TransportError(BasinError):
    """Connection, DNS or timeout failure before a response was received."""


class ServerError(BasinError):
    """
    Vault service answered with a non-2xx status.

    Attributes:
        status_code: HTTP status returned by the service
        body: Response body (text), kept for diagnostics
    """

    def __init__(self, message: str, status_code: int, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class DecodeError(BasinError):
    """Response payload was not in the expected shape."""


class ConfigError(BasinError):
    """Environment configuration is missing or malformed."""


class NotYetIngestedError(BasinError):
    """
    Raised by the workflow when a written event never became visible.

    The client's polling call returns a NotYetIngested result instead of
    raising; the workflow turns that result into this error because it cannot
    continue without the event.
    """

    def __init__(self, outcome, message: Optional[str] = None):
        super().__init__(message or str(outcome))
        self.outcome = outcome
