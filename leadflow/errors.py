# leadflow/errors.py


class PipelineError(Exception):
    """Base class for errors raised by the pipeline core."""


class ConfigurationError(PipelineError):
    """Missing credentials or invalid settings. Aborts the run before any stage starts."""

    def __init__(self, problems: list[str]):
        self.problems = list(problems)
        super().__init__("Configuration invalid: " + "; ".join(self.problems))


class TransportNotReady(PipelineError):
    """The messaging session could not be established before delivery."""


class RunCancelled(PipelineError):
    """Raised between batches once cancellation has been requested.

    ``completed`` holds the outcomes of the groups that did run, in input order.
    """

    def __init__(self, message: str, completed: list = None):
        self.completed = completed or []
        super().__init__(message)


class SnapshotNotFound(PipelineError):
    pass


class DeliveryError(PipelineError):
    """A single message could not be sent (unregistered number, rejected payload)."""
