"""Error kinds raised while provisioning the SHIR environment.

Every fatal condition halts forward progress. No partial-state cleanup is
performed: operators re-run the deployment (idempotently) after fixing the
underlying cause.
"""

from __future__ import annotations

from typing import Any


class DeploymentError(Exception):
    """Base class for all deployment failures."""

    pass


class LookupFailure(DeploymentError):
    """Raised when a provider cannot answer an existence or status query.

    Covers unreachable endpoints and authorization failures. Never retried:
    "cannot determine" is distinct from "confirmed absent".
    """

    def __init__(self, message: str, *, resource: str | None = None) -> None:
        super().__init__(message)
        self.resource = resource


class ValidationFailure(DeploymentError):
    """Raised when template validation reports one or more errors."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__(f"Template validation failed with {len(errors)} error(s)")
        self.errors = list(errors)


class DeploymentFailure(DeploymentError):
    """Raised when the template deployment does not reach Succeeded.

    The provider error payload is kept verbatim in ``detail``.
    """

    def __init__(self, message: str, *, detail: Any = None) -> None:
        super().__init__(message)
        self.detail = detail


class ReadinessTimeout(DeploymentError):
    """Raised when the integration runtime did not come online in time."""

    def __init__(self, runtime_name: str, attempts: int, last_state: str) -> None:
        super().__init__(
            f"Integration runtime '{runtime_name}' not online after {attempts} attempt(s), "
            f"last state: {last_state}"
        )
        self.runtime_name = runtime_name
        self.attempts = attempts
        self.last_state = last_state
