"""converge exception hierarchy.

All custom exceptions inherit from ConvergeError, allowing callers
to catch broad or specific error categories as needed. Components
convert these into typed outcomes at their own boundary; the
scenario pipeline never sees a raw transport error.
"""


class ConvergeError(Exception):
    """Base exception for all converge errors."""

    def __init__(self, message: str = "", step: str | None = None) -> None:
        self.step = step
        super().__init__(message)


class ConfigurationError(ConvergeError):
    """Raised when settings, profiles, or a scenario definition are invalid.

    Examples: unknown convergence profile, malformed profiles.yaml,
    scenario factory that cannot be imported.
    """


class ObservationError(ConvergeError):
    """Base for errors raised while observing remote state."""


class TransientObservationError(ObservationError):
    """A look at remote state failed in a way that may clear up.

    Examples: network hiccup, 5xx from the API server, resource not
    created yet. Wait loops treat this as Pending and look again.
    """


class TerminalObservationError(ObservationError):
    """A look at remote state proved the target can never be reached.

    Examples: app status "failed", unparseable status payload,
    authentication rejected. Wait loops stop immediately.
    """


class ActionError(ConvergeError):
    """Raised when a remote-mutating action fails."""


class RetryableActionError(ActionError):
    """Action failed but re-issuing it may succeed.

    Examples: resource not yet schedulable, transient 5xx, webhook
    not ready to admit the object.
    """


class TerminalActionError(ActionError):
    """Action failed and re-issuing it cannot help.

    Examples: malformed request, authentication failure, chart
    version that does not exist.
    """


class RetryExhaustedError(ActionError):
    """Every allowed attempt of a retryable action failed.

    The last error is kept verbatim on ``last_error`` and chained as
    ``__cause__``.
    """

    def __init__(
        self,
        attempts: int,
        last_error: BaseException,
        step: str | None = None,
    ) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Action failed after {attempts} attempt(s): {last_error}",
            step,
        )


class CleanupError(ConvergeError):
    """Raised (and collected) when a deferred teardown action fails."""

    def __init__(
        self,
        label: str,
        cause: BaseException,
        step: str | None = None,
    ) -> None:
        self.label = label
        self.cause = cause
        super().__init__(f"Cleanup '{label}' failed: {cause}", step)
