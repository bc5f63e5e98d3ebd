# errors.py
# Exception taxonomy for the cnd test harness.
#
# Startup and resolution errors abort the instance and the enclosing setup.
# Polling and transport errors abort only the enclosing scenario.
# The kill switch never raises any of these.

from typing import Any


class HarnessError(Exception):
    """Base class for every error raised by the harness."""


class ConfigurationError(HarnessError):
    """Raised when actor or ledger configuration is missing or invalid."""


# ---------------------------------------------------------------------------
# Binary resolution
# ---------------------------------------------------------------------------


class UnsupportedPlatformError(HarnessError):
    """Raised when the download table has no entry for this platform."""


class DownloadError(HarnessError):
    """Raised when fetching or unpacking a node binary fails."""


# ---------------------------------------------------------------------------
# Instance lifecycle
# ---------------------------------------------------------------------------


class ReadinessTimeoutError(HarnessError):
    """Raised when a readiness marker does not show up in a log in time."""


class StartupTimeoutError(HarnessError):
    """Raised when a node never became ready. Fatal to the test, never retried."""


class CredentialExtractionError(HarnessError):
    """Raised when a node's post-start credentials cannot be found or parsed."""


class NotReadyError(HarnessError):
    """Raised when a ledger config is requested before the instance is running."""


# ---------------------------------------------------------------------------
# Daemon interaction
# ---------------------------------------------------------------------------


class TransportError(HarnessError):
    """Raised when an HTTP call to a daemon fails. Never retried."""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class PollTimeoutError(HarnessError):
    """Raised when a poll predicate stays false past its timeout."""

    def __init__(self, location: str, last_body: Any, elapsed: float) -> None:
        super().__init__(
            f"Polling {location} timed out after {elapsed:.1f}s. "
            f"Last body: {last_body!r}"
        )
        self.location = location
        self.last_body = last_body
        self.elapsed = elapsed


class ActionError(HarnessError):
    """Raised when the daemon rejects a call or does not offer an action."""


class ScenarioError(HarnessError):
    """Raised by the driver when a step or its post-condition fails."""

    def __init__(self, index: int, description: str, cause: BaseException) -> None:
        super().__init__(f"Step {index + 1} ({description}) failed: {cause}")
        self.index = index
        self.description = description
        self.cause = cause
