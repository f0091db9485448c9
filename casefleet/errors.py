"""Exception taxonomy.

Lock contention and stale-lease reclaims are not exceptions: they are
reported as AcquireOutcome values by the lease manager.
"""

from typing import Optional


class CaseFleetError(Exception):
    """Base class for casefleet errors."""
    pass


class StoreUnavailableError(CaseFleetError):
    """The record store could not be reached. Callers retry the whole operation."""
    pass


class TransientWorkerError(CaseFleetError):
    """Raised by update handlers for network, timeout, captcha or parse failures.

    Counts toward the item's cooldown; the item is retried after the natural
    backoff of the eligibility filter.
    """

    def __init__(self, error_type: str, message: Optional[str] = None):
        super().__init__(message or error_type)
        self.error_type = error_type
        self.message = message


class RunNotFoundError(CaseFleetError, LookupError):
    """A run id passed to update_run/finish_run does not exist."""
    pass


class ConfigError(CaseFleetError, ValueError):
    """A configuration patch produced an invalid configuration."""
    pass
