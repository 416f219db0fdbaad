"""Tier-ordered teardown of everything a progress record describes.

Resources are deleted one at a time, tier by tier:

1. deploy stages, 2. deploy pipelines, 3. build stages, 4. build pipelines,
5. deploy artifacts and container repositories, 6. code repositories and
local state, 7. project level resources and finally the project.

A failed delete leaves its field in the record and marks the tier for a
tag sweep; the record is saved after every successful delete so an
interrupted teardown resumes where it stopped.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterator, Optional, Sequence, Union

from devops_lifecycle.checkpoint_storage import CheckpointStorageBackend
from devops_lifecycle.errors import (
    LifecycleError,
    ProviderError,
    TagSweepError,
    WorkRequestFailedError,
    WorkRequestTimeoutError,
)
from devops_lifecycle.models import (
    ResourceKind,
    TeardownResult,
    folder_key,
    is_record_empty,
    is_repository_empty,
)
from devops_lifecycle.provider_client import ProviderClient
from devops_lifecycle.services.local_cleanup import LocalArtifactCleaner
from devops_lifecycle.services.poller import await_resource

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]
Deleter = Callable[[str], Awaitable[None]]

PER_TIER = "per_tier"
PIPELINE_ONLY = "pipeline_only"
STAGE_SWEEP_MODES = (PER_TIER, PIPELINE_ONLY)

# (field infix, description, apply config map stage field)
DEPLOY_FLAVORS = (
    ("Jvm", "docker jvm image", "applyConfigMapStage"),
    ("Native", "docker native executables", "applyNativeConfigMapStage"),
)

# (field prefix, description)
BUILD_FLAVORS = (
    ("docker_jvm", "docker jvm image"),
    ("docker_ni", "docker native executable"),
    ("ni", "native executable"),
    ("dev", "fat JAR"),
)

ARTIFACT_FIELDS = (
    ("oke_configMapArtifact", "OKE ConfigMap artifact"),
    ("oke_deployJvmConfigArtifact", "OKE jvm deployment configuration artifact"),
    ("oke_deployNativeConfigArtifact", "OKE native deployment configuration artifact"),
    ("oke_podDeletionCommandArtifact", "OKE pod deletion command spec artifact"),
    ("docker_jvmbuildArtifact", "docker jvm image artifact"),
    ("docker_nibuildArtifact", "docker native executable artifact"),
    ("nibuildArtifact", "native executable artifact"),
    ("devbuildArtifact", "fat JAR artifact"),
)

CONTAINER_REPOSITORY_FIELDS = (
    ("jvmContainerRepository", "jvm container repository"),
    ("nativeContainerRepository", "native container repository"),
)


def _handle(value: Any) -> Optional[str]:
    """Resource id stored in a record field, if the field holds one."""
    if isinstance(value, dict):
        return value.get("ocid") or None
    if isinstance(value, str) and value:
        return value
    return None


@dataclass
class _Run:
    """State of one teardown run."""

    folders: list[str]
    record: dict
    progress: Optional[ProgressCallback] = None
    # (owner, field) pairs left for the next tag sweep
    pending: list[tuple[dict, str]] = field(default_factory=list)

    @property
    def compartment_id(self) -> Optional[str]:
        return _handle(self.record.get("compartment"))

    @property
    def tag(self) -> Optional[str]:
        return self.record.get("tag")

    @property
    def project_name(self) -> str:
        project = self.record.get("project")
        if isinstance(project, dict):
            return project.get("name") or project.get("ocid") or ""
        return ""

    @property
    def location(self) -> str:
        compartment = self.record.get("compartment")
        compartment_name = compartment.get("name") if isinstance(compartment, dict) else None
        return "/".join(part for part in (compartment_name, self.project_name) if part)

    def targets(self) -> Iterator[tuple[str, dict]]:
        """Yield every repository record, sub-modules before their repository."""
        repositories = self.record.get("repositories") or {}
        for repo_name, repo in list(repositories.items()):
            if not repo:
                continue
            for sub_name, sub in list((repo.get("subs") or {}).items()):
                if sub:
                    yield f"{sub_name} of {repo_name}", sub
            yield repo_name, repo


class TeardownEngine:
    """Drives a progress record to empty, deleting every live resource once."""

    def __init__(
        self,
        provider: ProviderClient,
        checkpoints: CheckpointStorageBackend,
        local_cleaner: Optional[LocalArtifactCleaner] = None,
        stage_sweep_mode: str = PER_TIER,
        bootstrap_timeout: float = 60.0,
        bootstrap_poll: float = 2.0,
    ):
        if stage_sweep_mode not in STAGE_SWEEP_MODES:
            raise ValueError(
                f"Unknown stage sweep mode {stage_sweep_mode!r}, expected one of {STAGE_SWEEP_MODES}"
            )
        self.provider = provider
        self.checkpoints = checkpoints
        self.local_cleaner = local_cleaner
        self.stage_sweep_mode = stage_sweep_mode
        self.bootstrap_timeout = bootstrap_timeout
        self.bootstrap_poll = bootstrap_poll

    async def undeploy(
        self,
        folders: Union[str, Sequence[str]],
        progress: Optional[ProgressCallback] = None,
    ) -> TeardownResult:
        """Run the teardown and report the first fatal error instead of raising it."""
        logger.info("[undeploy] Invoked undeploy of folder(s) %s", folder_key(folders))
        try:
            await self.run(folders, progress)
        except LifecycleError as e:
            logger.exception("[undeploy] Failed: %s", e)
            return TeardownResult(success=False, error=str(e))
        logger.info("[undeploy] Devops project successfully deleted")
        return TeardownResult(success=True)

    async def run(
        self,
        folders: Union[str, Sequence[str]],
        progress: Optional[ProgressCallback] = None,
    ) -> None:
        """Tear down everything recorded for the folders.

        Raises TagSweepError when a tag sweep fails; the stored record then
        reflects the last successful delete.
        """
        names = folders.split(":") if isinstance(folders, str) else list(folders)
        record = self.checkpoints.load(names)
        if record is None:
            logger.info("[undeploy] Nothing recorded for %s", folder_key(names))
            return

        run = _Run(folders=names, record=record, progress=progress)
        if record.get("repositories"):
            await self._deploy_stages(run)
            await self._deploy_pipelines(run)
            await self._build_stages(run)
            await self._build_pipelines(run)
            await self._artifacts(run)
            await self._code_repositories(run)
        await self._knowledge_base(run)
        await self._cluster_environment(run)
        await self._artifact_repository(run)
        await self._project_log(run)
        await self._project(run)
        self._finish(run)

    # -- helpers --

    def _report(self, run: _Run, message: str) -> None:
        logger.info("[undeploy] %s", message)
        if run.progress:
            run.progress(message)

    def _save(self, run: _Run) -> None:
        self.checkpoints.save(run.folders, run.record)

    async def _delete(
        self,
        run: _Run,
        owner: dict,
        field_name: str,
        kind: ResourceKind,
        message: str,
        deleter: Optional[Deleter] = None,
    ) -> bool:
        """Delete the resource a field points to.

        Returns True when the field is absent afterwards, False when it was
        left for the tag sweep.
        """
        if field_name not in owner:
            return True
        resource_id = _handle(owner[field_name])
        if resource_id is None:
            run.pending.append((owner, field_name))
            return False

        self._report(run, message)
        try:
            if deleter is None:
                await self.provider.delete_and_wait(kind, resource_id, message)
            else:
                await deleter(resource_id)
        except (ProviderError, WorkRequestFailedError, WorkRequestTimeoutError) as e:
            logger.warning("[undeploy] %s failed, left for tag sweep: %s", message, e)
            run.pending.append((owner, field_name))
            return False

        del owner[field_name]
        self._save(run)
        return True

    async def _sweep(
        self,
        run: _Run,
        kinds: Sequence[ResourceKind],
        description: str,
        scope_id: Optional[str] = None,
    ) -> None:
        """Delete by deploy tag when any field of the tier was left pending."""
        if not run.pending:
            return
        scope_id = scope_id or run.compartment_id
        if not scope_id or not run.tag:
            raise TagSweepError(
                description, LifecycleError("no scope or deploy tag recorded"), kinds
            )

        self._report(run, f"Deleting {description} by deploy tag {run.tag}...")
        for kind in kinds:
            try:
                await self.provider.delete_by_tag(kind, scope_id, run.tag)
            except LifecycleError as e:
                raise TagSweepError(description, e, kinds) from e

        for owner, field_name in run.pending:
            owner.pop(field_name, None)
        run.pending.clear()
        self._save(run)

    def _prune_repositories(self, run: _Run) -> None:
        repositories = run.record.get("repositories") or {}
        changed = False
        for repo_name, repo in list(repositories.items()):
            subs = (repo or {}).get("subs")
            if subs is not None:
                for sub_name, sub in list(subs.items()):
                    if not sub:
                        del subs[sub_name]
                        changed = True
                if not subs:
                    del repo["subs"]
                    changed = True
            if not repo or is_repository_empty(repo):
                del repositories[repo_name]
                changed = True
        if changed:
            self._save(run)

    # -- tiers --

    async def _deploy_stages(self, run: _Run) -> None:
        for name, owner in run.targets():
            for flavor, description, apply_field in DEPLOY_FLAVORS:
                await self._delete(
                    run,
                    owner,
                    f"setupSecretForDeploy{flavor}Stage",
                    ResourceKind.DEPLOY_STAGE,
                    f"Deleting {description} setup secret stage for {name}",
                )
                await self._delete(
                    run,
                    owner,
                    f"deploy{flavor}ToOkeStage",
                    ResourceKind.DEPLOY_STAGE,
                    f"Deleting {description} deployment to OKE stage for {name}",
                )
                await self._delete(
                    run,
                    owner,
                    apply_field,
                    ResourceKind.DEPLOY_STAGE,
                    f"Deleting {description} apply ConfigMap stage for {name}",
                )
        if self.stage_sweep_mode == PER_TIER:
            await self._sweep(run, [ResourceKind.DEPLOY_STAGE], "deployment to OKE stages")

    async def _deploy_pipelines(self, run: _Run) -> None:
        for name, owner in run.targets():
            for flavor, description, _ in DEPLOY_FLAVORS:
                await self._delete(
                    run,
                    owner,
                    f"oke_deploy{flavor}Pipeline",
                    ResourceKind.DEPLOY_PIPELINE,
                    f"Deleting {description} deployment to OKE pipeline for {name}",
                )
        await self._sweep(
            run,
            [ResourceKind.DEPLOY_STAGE, ResourceKind.DEPLOY_PIPELINE],
            "deployment to OKE pipelines",
        )

    async def _build_stages(self, run: _Run) -> None:
        for name, owner in run.targets():
            for prefix, description in BUILD_FLAVORS:
                artifacts_gone = await self._delete(
                    run,
                    owner,
                    f"{prefix}buildPipelineArtifactsStage",
                    ResourceKind.BUILD_STAGE,
                    f"Deleting {description} pipeline artifacts stage for {name}",
                )
                build_field = f"{prefix}buildPipelineBuildStage"
                if not artifacts_gone:
                    # The build stage is a predecessor of the artifacts stage still in place.
                    if build_field in owner:
                        run.pending.append((owner, build_field))
                    continue
                await self._delete(
                    run,
                    owner,
                    build_field,
                    ResourceKind.BUILD_STAGE,
                    f"Deleting {description} pipeline build stage for {name}",
                )
        if self.stage_sweep_mode == PER_TIER:
            await self._sweep(run, [ResourceKind.BUILD_STAGE], "build pipeline stages")

    async def _build_pipelines(self, run: _Run) -> None:
        for name, owner in run.targets():
            for prefix, description in BUILD_FLAVORS:
                await self._delete(
                    run,
                    owner,
                    f"{prefix}buildPipeline",
                    ResourceKind.BUILD_PIPELINE,
                    f"Deleting {description} build pipeline for {name}",
                )
        await self._sweep(
            run,
            [ResourceKind.BUILD_STAGE, ResourceKind.BUILD_PIPELINE],
            "build pipelines",
        )

    async def _artifacts(self, run: _Run) -> None:
        for name, owner in run.targets():
            for field_name, description in ARTIFACT_FIELDS:
                await self._delete(
                    run,
                    owner,
                    field_name,
                    ResourceKind.DEPLOY_ARTIFACT,
                    f"Deleting {description} for {name}",
                )
            for field_name, description in CONTAINER_REPOSITORY_FIELDS:
                await self._delete(
                    run,
                    owner,
                    field_name,
                    ResourceKind.CONTAINER_REPOSITORY,
                    f"Deleting {description} for {name}",
                )
        await self._sweep(
            run,
            [ResourceKind.DEPLOY_ARTIFACT, ResourceKind.CONTAINER_REPOSITORY],
            "artifacts",
        )
        self._prune_repositories(run)

    async def _code_repositories(self, run: _Run) -> None:
        repositories = run.record.get("repositories") or {}
        for repo_name, repo in list(repositories.items()):
            if repo:
                await self._delete(
                    run,
                    repo,
                    "codeRepository",
                    ResourceKind.CODE_REPOSITORY,
                    f"Deleting source code repository {run.location}/{repo_name}",
                )
                if is_repository_empty(repo):
                    del repositories[repo_name]
                    self._save(run)
            if self.local_cleaner:
                try:
                    self.local_cleaner.clean(run.folders, repo_name, run.progress)
                except OSError as e:
                    logger.warning("[undeploy] Cleaning local state of %s failed: %s", repo_name, e)
        await self._sweep(run, [ResourceKind.CODE_REPOSITORY], "source code repositories")
        self._prune_repositories(run)

    async def _knowledge_base(self, run: _Run) -> None:
        record = run.record
        fields = [f for f in ("knowledgeBaseOCID", "knowledgeBaseWorkRequest") if f in record]
        knowledge_base_id = _handle(record.get("knowledgeBaseOCID"))
        work_request_id = _handle(record.get("knowledgeBaseWorkRequest"))
        if not knowledge_base_id and work_request_id:
            try:
                knowledge_base_id = await await_resource(
                    self.provider.get_work_request,
                    f"knowledge base for project {run.project_name}",
                    work_request_id,
                    timeout=self.bootstrap_timeout,
                    poll_interval=self.bootstrap_poll,
                )
            except (ProviderError, WorkRequestFailedError, WorkRequestTimeoutError) as e:
                logger.warning("[undeploy] Resolving knowledge base failed: %s", e)

        if knowledge_base_id:
            message = f"Deleting ADM knowledge base for {run.location}"
            self._report(run, message)
            try:
                await self.provider.delete_knowledge_base(knowledge_base_id, run.compartment_id)
            except (ProviderError, WorkRequestFailedError) as e:
                logger.warning("[undeploy] %s failed, left for tag sweep: %s", message, e)
                run.pending.extend((record, f) for f in fields)
            else:
                for f in fields:
                    del record[f]
                self._save(run)
        else:
            run.pending.extend((record, f) for f in fields)
        await self._sweep(run, [ResourceKind.KNOWLEDGE_BASE], "knowledge bases")

    async def _cluster_environment(self, run: _Run) -> None:
        await self._delete(
            run,
            run.record,
            "okeClusterEnvironment",
            ResourceKind.DEPLOY_ENVIRONMENT,
            f"Deleting OKE cluster environment for {run.location}",
        )
        await self._sweep(run, [ResourceKind.DEPLOY_ENVIRONMENT], "OKE cluster environments")

    async def _artifact_repository(self, run: _Run) -> None:
        async def delete_repository(repository_id: str) -> None:
            await self.provider.delete_artifact_repository(repository_id, run.compartment_id)

        await self._delete(
            run,
            run.record,
            "artifactsRepository",
            ResourceKind.ARTIFACT_REPOSITORY,
            f"Deleting artifact repository for {run.location}",
            deleter=delete_repository,
        )
        await self._sweep(run, [ResourceKind.ARTIFACT_REPOSITORY], "artifact repositories")

    async def _project_log(self, run: _Run) -> None:
        log_group_id = _handle(run.record.get("logGroup"))

        async def delete_log(work_request_id: str) -> None:
            log_id = await await_resource(
                self.provider.get_work_request,
                f"log for project {run.project_name}",
                work_request_id,
                timeout=self.bootstrap_timeout,
                poll_interval=self.bootstrap_poll,
            )
            await self.provider.delete_and_wait(
                ResourceKind.LOG, log_id, "Deleting project log", parent_id=log_group_id
            )

        await self._delete(
            run,
            run.record,
            "projectLogWorkRequest",
            ResourceKind.LOG,
            f"Deleting project log for {run.location}",
            deleter=delete_log,
        )
        # Logs are listed per log group.
        if run.pending and not log_group_id:
            raise TagSweepError(
                "project logs", LifecycleError("no log group recorded"), [ResourceKind.LOG]
            )
        await self._sweep(run, [ResourceKind.LOG], "project logs", scope_id=log_group_id)

    async def _project(self, run: _Run) -> None:
        await self._delete(
            run,
            run.record,
            "project",
            ResourceKind.PROJECT,
            f"Deleting devops project {run.location}",
        )
        await self._sweep(run, [ResourceKind.PROJECT], "devops project")

    def _finish(self, run: _Run) -> None:
        if not is_record_empty(run.record):
            self._save(run)
            raise LifecycleError(
                f"Teardown of {folder_key(run.folders)} left resources behind: "
                f"{', '.join(sorted(run.record))}"
            )
        run.record.clear()
        self.checkpoints.clear(run.folders)
