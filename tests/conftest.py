"""
Shared pytest fixtures for the orchestrator tests.

Provides:
- An in-memory provider that records every call
- File backed checkpoint storage and ledger under tmp_path
"""
import itertools
from typing import Any, Optional

import pytest

from devops_lifecycle.checkpoint_storage import FileCheckpointStorage
from devops_lifecycle.database import Database
from devops_lifecycle.errors import ProviderError
from devops_lifecycle.models import ResourceKind, ResourceSummary, WorkRequest
from devops_lifecycle.provider_client import ProviderClient

TAG_KEY = "devops_tooling_deployID"


class FakeProvider(ProviderClient):
    """Provider keeping resources in dictionaries.

    Resources are raw provider dicts so they go through the same model
    validation as real responses. Deletes return a work request that
    succeeds unless the resource id is in ``failing``.
    """

    def __init__(self):
        super().__init__(poll_interval=0)
        self.resources: dict[ResourceKind, dict[str, dict]] = {}
        self.work_requests: dict[str, WorkRequest] = {}
        self.deleted: list[tuple[ResourceKind, str]] = []
        self.sweeps: list[tuple[ResourceKind, str, str]] = []
        self.failing: set[str] = set()
        self.failing_work_requests: set[str] = set()
        self.sweep_error: Optional[Exception] = None
        self.list_error: Optional[Exception] = None
        self._ids = itertools.count(1)

    def add(self, kind: ResourceKind, resource_id: str, **fields: Any) -> dict:
        raw = {"id": resource_id, "lifecycleState": "ACTIVE", **fields}
        self.resources.setdefault(kind, {})[resource_id] = raw
        return raw

    def add_work_request(
        self, work_request_id: str, status: str = "SUCCEEDED", identifier: Optional[str] = None
    ) -> None:
        resources = [{"identifier": identifier}] if identifier else []
        self.work_requests[work_request_id] = WorkRequest.model_validate(
            {"id": work_request_id, "status": status, "resources": resources}
        )

    def exists(self, kind: ResourceKind, resource_id: str) -> bool:
        return resource_id in self.resources.get(kind, {})

    async def create(self, kind: ResourceKind, spec: dict[str, Any]) -> str:
        resource_id = f"{kind.value}-{next(self._ids)}"
        self.add(kind, resource_id, **spec)
        return resource_id

    async def delete(
        self,
        kind: ResourceKind,
        resource_id: str,
        parent_id: Optional[str] = None,
    ) -> Optional[str]:
        if resource_id in self.failing:
            raise ProviderError(f"Conflict deleting {resource_id}", status_code=409)
        if not self.exists(kind, resource_id):
            raise ProviderError(f"{resource_id} not found", status_code=404)
        del self.resources[kind][resource_id]
        self.deleted.append((kind, resource_id))
        work_request_id = f"wr-{resource_id}"
        status = "FAILED" if resource_id in self.failing_work_requests else "SUCCEEDED"
        self.add_work_request(work_request_id, status)
        return work_request_id

    async def list_resources(
        self,
        kind: ResourceKind,
        params: Optional[dict[str, Any]] = None,
    ) -> list[ResourceSummary]:
        if self.list_error is not None:
            raise self.list_error
        result = []
        for raw in self.resources.get(kind, {}).values():
            if all(raw.get(key) == value for key, value in (params or {}).items()):
                result.append(ResourceSummary.model_validate(raw))
        return result

    async def get_resource(self, kind: ResourceKind, resource_id: str) -> ResourceSummary:
        if not self.exists(kind, resource_id):
            raise ProviderError(f"{resource_id} not found", status_code=404)
        return ResourceSummary.model_validate(self.resources[kind][resource_id])

    async def get_work_request(self, work_request_id: str) -> WorkRequest:
        if work_request_id not in self.work_requests:
            raise ProviderError(f"{work_request_id} not found", status_code=404)
        return self.work_requests[work_request_id]

    async def delete_by_tag(self, kind: ResourceKind, scope_id: str, tag: str) -> None:
        self.sweeps.append((kind, scope_id, tag))
        if self.sweep_error is not None:
            raise self.sweep_error
        await super().delete_by_tag(kind, scope_id, tag)

    def deleted_ids(self) -> list[str]:
        return [resource_id for _, resource_id in self.deleted]


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def checkpoints(tmp_path) -> FileCheckpointStorage:
    return FileCheckpointStorage(str(tmp_path / "state"))


@pytest.fixture
def database(tmp_path) -> Database:
    return Database(f"sqlite:///{tmp_path / 'ledger.db'}")
