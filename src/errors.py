"""
Error taxonomy for the RabbitMQ operator.

Every failure raised out of a convergence pass is one of these types. The
controller uses ``retryable`` and ``requeue_after`` to decide whether and
when a failed resource is reconsidered.
"""

from typing import List, Optional


class OperatorError(Exception):
    """Base class for errors surfaced by a convergence pass."""

    retryable: bool = True
    reason: str = "ReconcileFailed"

    def __init__(self, message: str, requeue_after: Optional[int] = None):
        self.message = message
        self.requeue_after = requeue_after
        super().__init__(message)


class ConfigurationError(OperatorError):
    """Bad spec or missing required default. Never retried automatically."""

    retryable = False
    reason = "ConfigurationError"


class DependencyError(OperatorError):
    """Broker or secret store unreachable, or an unexpected response."""

    reason = "DependencyError"


class DriftError(OperatorError):
    """Observed state diverges from a field that cannot be changed in place."""

    reason = "DriftDetected"

    def __init__(
        self,
        message: str,
        diffs: Optional[List[str]] = None,
        requeue_after: int = 60,
    ):
        self.diffs = list(diffs or [])
        super().__init__(message, requeue_after=requeue_after)


class ValidationError(OperatorError):
    """Raised at admission time when a resource spec is rejected."""

    retryable = False
    reason = "ValidationFailed"


class ManagementAPIError(Exception):
    """Non-success response from the broker's management HTTP API."""

    def __init__(self, status: int, message: str, body: Optional[object] = None):
        self.status = status
        self.body = body
        super().__init__(f"HTTP {status}: {message}")

    @property
    def not_found(self) -> bool:
        return self.status == 404
