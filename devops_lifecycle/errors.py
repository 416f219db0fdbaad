"""Error taxonomy for provider calls, work requests and teardown."""

from typing import Optional, Sequence

from devops_lifecycle.models import ResourceKind


class LifecycleError(Exception):
    """Base class for all orchestrator errors."""


class ProviderError(LifecycleError):
    """A provider call failed before returning a usable response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)

    @property
    def not_found(self) -> bool:
        return self.status_code == 404


class WorkRequestFailedError(LifecycleError):
    """A work request finished in a terminal status other than SUCCEEDED."""

    def __init__(self, description: str, work_request_id: str, status: str):
        self.work_request_id = work_request_id
        self.status = status
        super().__init__(f"{description} failed (work request {work_request_id}: {status})")


class WorkRequestTimeoutError(LifecycleError):
    """A work request did not reach a terminal status within the allowed time."""

    def __init__(self, description: str, work_request_id: str, timeout: float):
        self.work_request_id = work_request_id
        self.timeout = timeout
        super().__init__(f"Timeout while waiting for {description} ({timeout:g}s)")


class InconsistentPipelineError(LifecycleError):
    """Pipeline stages cannot be ordered for deletion."""

    def __init__(self, pipeline_id: str, unresolved: Sequence[str], reason: str = ""):
        self.pipeline_id = pipeline_id
        self.unresolved = list(unresolved)
        detail = f": {reason}" if reason else ""
        super().__init__(
            f"Inconsistent pipeline structure for {pipeline_id}{detail} "
            f"(unresolved stages: {', '.join(self.unresolved) or 'none'})"
        )


class TagSweepError(LifecycleError):
    """Tag-scoped cleanup of a resource kind failed; no fallback remains."""

    def __init__(
        self,
        description: str,
        cause: Optional[BaseException] = None,
        kinds: Sequence[ResourceKind] = (),
    ):
        self.description = description
        self.kinds = list(kinds)
        message = f"Failed to delete {description}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class OperationInProgressError(LifecycleError):
    """Another deploy or undeploy operation is already running for a folder."""

    def __init__(self, folder_key: str, operation: str):
        self.folder_key = folder_key
        self.operation = operation
        super().__init__(f"Operation '{operation}' is already in progress for {folder_key}")
