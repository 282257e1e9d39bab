"""
Error taxonomy for deployment runs.
"""
from typing import Optional


class DeployError(Exception):
    """Base class for every error raised by the coordinator and its collaborators."""


class ConfigError(DeployError):
    """A run parameter or setting is missing or invalid."""


class PlatformError(DeployError):
    """The Kubernetes control plane rejected a call or failed to answer it."""

    def __init__(self, operation: str, reason: str, status: Optional[int] = None):
        self.operation = operation
        self.reason = reason
        self.status = status
        detail = f"{operation} failed"
        if status is not None:
            detail += f" ({status})"
        super().__init__(f"{detail}: {reason}")


class PlatformTimeout(PlatformError):
    """The control plane did not answer within the per-call timeout."""


class VerificationFailure(DeployError):
    """Health verification did not pass and the active policy blocks the switch."""

    def __init__(self, result):
        self.result = result
        super().__init__(
            f"verification of {result.environment.value} failed: {result.reason.value}"
        )


class NotFoundIgnorable(DeployError):
    """Delete of an absent resource; callers at the switch boundary treat it as success."""


class RunCancelled(DeployError):
    """The run was cancelled before any cluster mutation was issued."""
