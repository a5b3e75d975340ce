"""Error taxonomy shared by the API client, the core and the UI."""

from __future__ import annotations


class TriliumError(Exception):
    """Base class for every error raised by trilium-tui."""

    retryable = False

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


class NetworkError(TriliumError):
    """Transport failure, timeout, throttling or server-side 5xx."""

    retryable = True


class NotFoundError(TriliumError):
    """The requested note, branch or child does not exist."""


class AuthError(TriliumError):
    """The API token was rejected."""


class ApiError(TriliumError):
    """Any other non-success response from the server."""

    def __init__(self, message: str, *, status: int | None = None, body: str = "") -> None:
        super().__init__(message, status=status)
        self.body = body


class ValidationError(TriliumError):
    """Malformed input (entity id, date string, config value)."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class ConfigError(TriliumError):
    """Configuration file missing, unreadable or incomplete."""


class EditorError(TriliumError):
    """External editor failed to start or exited non-zero."""

    def __init__(self, message: str, *, exit_code: int | None = None, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.cause = cause
