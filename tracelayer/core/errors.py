"""Exception hierarchy for the extraction engine.

API handlers translate these to HTTP status codes; the pipeline catches
everything at the run boundary and records it on the run.
"""


class TraceLayerError(Exception):
    """Base class for engine errors."""


class ExtractionNotConfiguredError(TraceLayerError):
    """No extraction capability is available. Raised before any run exists."""


class ConcurrentRunError(TraceLayerError):
    """A non-terminal extraction run already exists for the project."""

    def __init__(self, project_id: str, run_id: str | None = None, stage: str | None = None):
        self.project_id = project_id
        self.run_id = run_id
        self.stage = stage
        detail = f" (run {run_id}, stage: {stage})" if run_id else ""
        super().__init__(
            f"Pipeline is already running for project {project_id}{detail}. "
            "Wait for it to complete or cancel it first."
        )


class StageTransitionError(TraceLayerError):
    """Raised when a run stage transition is invalid."""


class RunCancelledError(TraceLayerError):
    """The run was cancelled; further stage writes are refused."""


class StoreInvariantError(TraceLayerError):
    """A store operation would violate an entity invariant."""


class AgentResponseError(TraceLayerError):
    """An extraction agent returned a malformed response."""


class NotFoundError(TraceLayerError):
    """A referenced row does not exist."""
