"""Error taxonomy for linkgate jobs.

Every fatal condition a job can hit maps to one exception type carrying a
stable ``reason_code`` so reports and the CLI can surface it without parsing
messages. A trigger mismatch is not an error and has no entry here.
"""

from __future__ import annotations

CONFIG_MISSING = "CONFIG_MISSING"
CONFIG_PARSE_ERROR = "CONFIG_PARSE_ERROR"
CONFIG_INVALID = "CONFIG_INVALID"
EVENT_UNSUPPORTED = "EVENT_UNSUPPORTED"
EVENT_INVALID = "EVENT_INVALID"
SERVICE_LAUNCH_FAILED = "SERVICE_LAUNCH_FAILED"
SERVICE_NOT_READY = "SERVICE_NOT_READY"
VERIFIER_FETCH_FAILED = "VERIFIER_FETCH_FAILED"
JOB_CANCELLED = "JOB_CANCELLED"


class LinkgateError(RuntimeError):
    """Base class for linkgate failures."""

    reason_code: str = "LINKGATE_ERROR"

    def __init__(self, message: str, reason_code: str | None = None) -> None:
        super().__init__(message)
        if reason_code is not None:
            self.reason_code = reason_code


class ConfigError(LinkgateError):
    """Workflow configuration could not be loaded or is invalid."""

    reason_code = CONFIG_INVALID


class TriggerError(LinkgateError):
    """Repository event could not be interpreted."""

    reason_code = EVENT_INVALID


class ServiceLaunchError(LinkgateError):
    """Container for the documentation server failed to start."""

    reason_code = SERVICE_LAUNCH_FAILED


class ServiceNotReady(LinkgateError):
    """Documentation server never answered within the readiness timeout."""

    reason_code = SERVICE_NOT_READY


class VerifierFetchError(LinkgateError):
    """Verifier release archive could not be downloaded or unpacked."""

    reason_code = VERIFIER_FETCH_FAILED


class JobCancelled(LinkgateError):
    """Job was superseded by a newer run for the same concurrency key."""

    reason_code = JOB_CANCELLED
