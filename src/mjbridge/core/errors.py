"""Error taxonomy for the Midjourney Bridge.

Every error raised by the core carries the HTTP status code the API layer
answers with, so route handlers never translate errors themselves.

Connection errors (``CredentialInvalidError``, ``ConnectionFailedError``) are
recorded by :class:`~mjbridge.core.connection.ConnectionManager` and exposed
through ``last_failure()``; they are never raised to request handlers.  All
other errors are raised synchronously to the calling request and leave the
session state untouched.
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for all bridge errors.

    Attributes:
        status_code: HTTP status returned by the API for this error.
    """

    status_code: int = 500


# -- Connection lifecycle ---------------------------------------------------


class CredentialInvalidError(BridgeError):
    """The backend rejected the authentication token."""

    status_code = 503

    def __init__(self, message: str = "invalid or expired credentials") -> None:
        super().__init__(message)


class ConnectionFailedError(BridgeError):
    """The backend session could not be established."""

    status_code = 503


class NotReadyError(BridgeError):
    """No live backend handle is available."""

    status_code = 503

    def __init__(self, message: str = "backend client is not ready") -> None:
        super().__init__(message)


class BackendNotReadyError(NotReadyError):
    """A session mutation was attempted while the backend is not ready."""


# -- Client input -----------------------------------------------------------


class InvalidRequestError(BridgeError):
    """A request field is missing or out of range."""

    status_code = 400


class NoActiveSessionError(BridgeError):
    """A follow-up action was requested before any generation."""

    status_code = 400

    def __init__(self, message: str = "no active session, call /imagine first") -> None:
        super().__init__(message)


class ActionNotFoundError(BridgeError):
    """No action of the current result matches the label query."""

    status_code = 400

    def __init__(self, label_query: str) -> None:
        super().__init__(f"no action matching '{label_query}' on the current result")
        self.label_query = label_query


# -- Backend failures -------------------------------------------------------


class BackendError(BridgeError):
    """Base for errors raised by a backend client while a job runs.

    The orchestrator wraps these into :class:`GenerationFailedError` or
    :class:`ActionFailedError`; any other exception is a bug and propagates.
    """

    status_code = 500


class JobRejectedError(BackendError):
    """The backend refused to accept a submitted job."""


class JobFailedError(BackendError):
    """A submitted job finished in a failed or cancelled state.

    Attributes:
        task_id: Backend id of the failed job.
    """

    def __init__(self, message: str, task_id: str | None = None) -> None:
        super().__init__(message)
        self.task_id = task_id


class GenerationFailedError(BridgeError):
    """The backend errored or returned nothing for a generation."""

    status_code = 500

    def __init__(self, reason: str) -> None:
        super().__init__(f"generation failed: {reason}")
        self.reason = reason


class ActionFailedError(BridgeError):
    """The backend errored or returned nothing for a follow-up action."""

    status_code = 500

    def __init__(self, reason: str) -> None:
        super().__init__(f"action failed: {reason}")
        self.reason = reason


class BackendTimeoutError(BridgeError):
    """A backend call did not resolve within the configured bound."""

    status_code = 500

    def __init__(self, timeout: float) -> None:
        super().__init__(f"backend did not respond within {timeout:g}s")
        self.timeout = timeout


class SessionBusyError(BridgeError):
    """Another session mutation is already in flight."""

    status_code = 409

    def __init__(self, message: str = "another generation or action is in progress") -> None:
        super().__init__(message)
