import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from devops_lifecycle.errors import ProviderError
from devops_lifecycle.models import ResourceKind, ResourceSummary, WorkRequest
from devops_lifecycle.services.poller import await_work_request
from devops_lifecycle.services.stage_order import sweep_order
from devops_lifecycle.settings import Settings

logger = logging.getLogger(__name__)

GONE_STATES = frozenset({"DELETING", "DELETED"})
STAGE_KINDS = frozenset({ResourceKind.BUILD_STAGE, ResourceKind.DEPLOY_STAGE})


class ProviderClient(ABC):
    """Cloud provider capability consumed by the orchestrator.

    Subclasses implement the raw calls; waiting for work requests and
    tag-scoped sweeps are built on top of them here.
    """

    def __init__(
        self,
        poll_interval: float = 2.0,
        deploy_tag_key: str = "devops_tooling_deployID",
    ):
        self.poll_interval = poll_interval
        self.deploy_tag_key = deploy_tag_key

    @abstractmethod
    async def create(self, kind: ResourceKind, spec: dict[str, Any]) -> str:
        """Create a resource; returns its id, or a work request id."""
        pass

    @abstractmethod
    async def delete(
        self,
        kind: ResourceKind,
        resource_id: str,
        parent_id: Optional[str] = None,
    ) -> Optional[str]:
        """Issue a delete; returns the work request id when there is one."""
        pass

    @abstractmethod
    async def list_resources(
        self,
        kind: ResourceKind,
        params: Optional[dict[str, Any]] = None,
    ) -> list[ResourceSummary]:
        """List every resource of a kind matching the query parameters."""
        pass

    @abstractmethod
    async def get_resource(self, kind: ResourceKind, resource_id: str) -> ResourceSummary:
        """Fetch a single resource."""
        pass

    @abstractmethod
    async def get_work_request(self, work_request_id: str) -> WorkRequest:
        """Fetch the current state of a work request."""
        pass

    async def delete_and_wait(
        self,
        kind: ResourceKind,
        resource_id: str,
        description: str,
        parent_id: Optional[str] = None,
    ) -> None:
        """Delete a resource and wait for its work request to succeed.

        A resource the provider no longer knows counts as deleted.
        """
        try:
            work_request_id = await self.delete(kind, resource_id, parent_id=parent_id)
        except ProviderError as e:
            if e.not_found:
                logger.info("%s: %s is already gone", description, resource_id)
                return
            raise
        if work_request_id:
            await await_work_request(
                self.get_work_request, description, work_request_id, self.poll_interval
            )

    async def delete_artifact_repository(self, repository_id: str, compartment_id: str) -> None:
        """Purge the generic artifacts of a repository, then delete it."""
        artifacts = await self.list_resources(
            ResourceKind.GENERIC_ARTIFACT,
            {"compartmentId": compartment_id, "repositoryId": repository_id},
        )
        for artifact in artifacts:
            await self.delete(ResourceKind.GENERIC_ARTIFACT, artifact.id)
        await self.delete_and_wait(
            ResourceKind.ARTIFACT_REPOSITORY, repository_id, "Deleting artifact repository"
        )

    async def delete_knowledge_base(self, knowledge_base_id: str, compartment_id: str) -> None:
        """Delete the vulnerability audits of a knowledge base, then the knowledge base."""
        audits = await self.list_resources(
            ResourceKind.VULNERABILITY_AUDIT,
            {"compartmentId": compartment_id, "knowledgeBaseId": knowledge_base_id},
        )
        for audit in audits:
            await self.delete_and_wait(
                ResourceKind.VULNERABILITY_AUDIT, audit.id, "Deleting vulnerability audit"
            )
        await self.delete_and_wait(
            ResourceKind.KNOWLEDGE_BASE, knowledge_base_id, "Deleting knowledge base"
        )

    async def delete_by_tag(self, kind: ResourceKind, scope_id: str, tag: str) -> None:
        """Delete every live resource of ``kind`` in the scope carrying the deploy tag.

        The scope is a compartment, or the log group for logs. Stages are
        deleted leaf-first and every delete is awaited before the next one.
        """
        scope_param = "logGroupId" if kind == ResourceKind.LOG else "compartmentId"
        resources = [
            resource
            for resource in await self.list_resources(kind, {scope_param: scope_id})
            if resource.freeform_tags.get(self.deploy_tag_key) == tag
            and resource.lifecycle_state not in GONE_STATES
        ]
        if not resources:
            return
        logger.info("Sweeping %d %s tagged %s", len(resources), kind.value, tag)

        if kind in STAGE_KINDS:
            resources = sweep_order(scope_id, resources)

        description = f"Deleting {kind.value} tagged {tag}"
        for resource in resources:
            if kind == ResourceKind.ARTIFACT_REPOSITORY:
                await self.delete_artifact_repository(resource.id, scope_id)
            elif kind == ResourceKind.KNOWLEDGE_BASE:
                await self.delete_knowledge_base(resource.id, scope_id)
            elif kind == ResourceKind.LOG:
                await self.delete_and_wait(kind, resource.id, description, parent_id=scope_id)
            else:
                await self.delete_and_wait(kind, resource.id, description)


class HttpProviderClient(ProviderClient):
    """Provider client over the provider REST API."""

    def __init__(
        self,
        api_base: str,
        auth_token: str,
        timeout: float = 30.0,
        page_limit: int = 1000,
        poll_interval: float = 2.0,
        deploy_tag_key: str = "devops_tooling_deployID",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(poll_interval=poll_interval, deploy_tag_key=deploy_tag_key)
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.page_limit = page_limit
        self.transport = transport

        self.headers = {
            "Authorization": f"Bearer {auth_token}",
            "Content-Type": "application/json",
        }

    @classmethod
    def from_settings(cls, settings: Settings) -> "HttpProviderClient":
        return cls(
            api_base=settings.provider_api_base,
            auth_token=settings.provider_auth_token,
            timeout=settings.provider_request_timeout,
            page_limit=settings.provider_page_limit,
            poll_interval=settings.poll_interval_seconds,
            deploy_tag_key=settings.deploy_tag_key,
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers=self.headers,
            timeout=self.timeout,
            transport=self.transport,
        )

    def _url(
        self,
        kind: ResourceKind,
        resource_id: Optional[str] = None,
        parent_id: Optional[str] = None,
    ) -> str:
        path = f"{self.api_base}/{kind.value}"
        if kind == ResourceKind.LOG and parent_id:
            path = f"{self.api_base}/logGroups/{parent_id}/logs"
        if resource_id:
            path = f"{path}/{resource_id}"
        return path

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        async with self._client() as client:
            try:
                response = await client.request(method, url, **kwargs)
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise ProviderError(
                    f"{method} {url} failed: {e.response.status_code} {e.response.text}",
                    status_code=e.response.status_code,
                ) from e
            except httpx.HTTPError as e:
                raise ProviderError(f"{method} {url} failed: {e}") from e
            return response

    async def create(self, kind: ResourceKind, spec: dict[str, Any]) -> str:
        """Create a resource."""
        response = await self._request("POST", self._url(kind), json=spec)
        body = response.json() if response.content else {}
        resource_id = body.get("id") or response.headers.get("opc-work-request-id")
        if not resource_id:
            raise ProviderError(f"Create {kind.value} returned neither an id nor a work request")
        return resource_id

    async def delete(
        self,
        kind: ResourceKind,
        resource_id: str,
        parent_id: Optional[str] = None,
    ) -> Optional[str]:
        """Delete a resource."""
        response = await self._request("DELETE", self._url(kind, resource_id, parent_id))
        return response.headers.get("opc-work-request-id")

    async def list_resources(
        self,
        kind: ResourceKind,
        params: Optional[dict[str, Any]] = None,
    ) -> list[ResourceSummary]:
        """List resources, following the next-page cursor."""
        query: dict[str, Any] = dict(params or {})
        query["limit"] = self.page_limit
        parent_id = query.get("logGroupId") if kind == ResourceKind.LOG else None
        url = self._url(kind, parent_id=parent_id)

        result: list[ResourceSummary] = []
        while True:
            response = await self._request("GET", url, params=query)
            body = response.json()
            items = body.get("items", []) if isinstance(body, dict) else body
            result.extend(ResourceSummary.model_validate(item) for item in items)
            next_page = response.headers.get("opc-next-page")
            if not next_page:
                return result
            query["page"] = next_page

    async def get_resource(self, kind: ResourceKind, resource_id: str) -> ResourceSummary:
        """Get a resource."""
        response = await self._request("GET", self._url(kind, resource_id))
        return ResourceSummary.model_validate(response.json())

    async def get_work_request(self, work_request_id: str) -> WorkRequest:
        """Get a work request."""
        response = await self._request("GET", f"{self.api_base}/workRequests/{work_request_id}")
        return WorkRequest.model_validate(response.json())
