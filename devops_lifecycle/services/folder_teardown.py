"""Removal of one repository from an otherwise intact DevOps project.

Unlike the full teardown this works from provider listings rather than from
a progress record: pipelines, artifacts and container repositories are
discovered by tags and well-known names.
"""

import logging
from typing import Callable, Optional, Sequence

from devops_lifecycle.errors import LifecycleError
from devops_lifecycle.models import ResourceKind, ResourceSummary, TeardownResult
from devops_lifecycle.provider_client import ProviderClient
from devops_lifecycle.services.local_cleanup import LocalArtifactCleaner, repository_name
from devops_lifecycle.services.stage_order import deletion_order

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]

CODE_REPO_ID_TAG = "devops_tooling_codeRepoID"
BUILD_PIPELINE_ID_TAG = "devops_tooling_buildPipelineOCID"
CODE_REPO_RESOURCES_TAG = "devops_tooling_codeRepoResourcesList"
PROJECT_RESOURCES_TAG = "devops_tooling_projectResourcesList"
USAGE_TAG = "devops_tooling_usage"
AUDIT_USAGE = "oci-devops-adm-audit"
LIVE_LOG_STATES = frozenset({"ACTIVE", "CREATING", "UPDATING"})


def deploy_artifact_names(repo_name: str, sub_names: Sequence[str]) -> list[str]:
    """Display names of the deploy artifacts generated for a repository."""
    names = [
        f"{repo_name}_dev_fatjar",
        f"{repo_name}_dev_executable",
        f"{repo_name}_oke_deploy_ni_configuration",
        f"{repo_name}_oke_deploy_jvm_configuration",
        f"{repo_name}_oke_configmap",
        f"{repo_name}_oke_deploy_docker_secret_setup_command",
    ]
    if sub_names:
        for sub_name in sub_names:
            names.append(f"{repo_name}_{sub_name}_native_docker_image")
            names.append(f"{repo_name}_{sub_name}_jvm_docker_image")
    else:
        names.append(f"{repo_name}_native_docker_image")
        names.append(f"{repo_name}_jvm_docker_image")
    return names


def container_repository_names(
    project_name: str,
    repo_name: str,
    sub_names: Sequence[str],
    is_last: bool,
) -> list[str]:
    """Names of the container repositories generated for a repository."""
    names = []
    if sub_names:
        for sub_name in sub_names:
            names.append(f"{project_name}-{repo_name}-{sub_name}")
            names.append(f"{project_name}-{repo_name}-{sub_name}-jvm")
            if is_last:
                names.append(f"{project_name}-{sub_name}")
                names.append(f"{project_name}-{sub_name}-jvm")
    else:
        names.append(f"{project_name}-{repo_name}")
        names.append(f"{project_name}-{repo_name}-jvm")
        if is_last:
            names.append(project_name)
            names.append(f"{project_name}-jvm")
    return [name.lower() for name in names]


class FolderTeardown:
    """Deletes everything one folder contributed to a DevOps project."""

    def __init__(
        self,
        provider: ProviderClient,
        local_cleaner: Optional[LocalArtifactCleaner] = None,
        project_tag_key: str = "devops_tooling_projectOCID",
    ):
        self.provider = provider
        self.local_cleaner = local_cleaner
        self.project_tag_key = project_tag_key
        self._progress: Optional[ProgressCallback] = None

    def _report(self, message: str) -> None:
        logger.info("[undeploy] %s", message)
        if self._progress:
            self._progress(message)

    async def undeploy(
        self,
        project_id: str,
        compartment_id: str,
        folder_name: str,
        sub_names: Sequence[str] = (),
        progress: Optional[ProgressCallback] = None,
    ) -> TeardownResult:
        """Run the folder teardown and report the first error instead of raising it."""
        logger.info("[undeploy] Undeploying folder %s", folder_name)
        try:
            await self.run(project_id, compartment_id, folder_name, sub_names, progress)
        except LifecycleError as e:
            logger.exception("[undeploy] Failed to delete folder %s: %s", folder_name, e)
            return TeardownResult(
                success=False,
                error=f"Failed to delete folder {folder_name} from a DevOps project: {e}",
            )
        logger.info("[undeploy] Folder %s successfully undeployed", folder_name)
        return TeardownResult(success=True)

    async def run(
        self,
        project_id: str,
        compartment_id: str,
        folder_name: str,
        sub_names: Sequence[str] = (),
        progress: Optional[ProgressCallback] = None,
    ) -> None:
        """Delete the folder's repository, pipelines, artifacts and local state.

        The project itself and its shared resources go too when the folder
        holds the project's last code repository.
        """
        self._progress = progress
        repo_name = repository_name(folder_name)

        project = await self.provider.get_resource(ResourceKind.PROJECT, project_id)
        repositories = await self.provider.list_resources(
            ResourceKind.CODE_REPOSITORY, {"projectId": project_id}
        )
        code_repository = next(
            (
                repo
                for repo in repositories
                if repo.name == repo_name and repo.freeform_tags.get(self.provider.deploy_tag_key)
            ),
            None,
        )
        if code_repository is None:
            raise LifecycleError(
                f"Either failed to resolve code repository {repo_name} inside project "
                f"{project.name} or it was not created by this tooling"
            )
        is_last = len(repositories) == 1
        logger.info("[undeploy] Folder %s will be undeployed from %s", folder_name, project.name)

        build_pipelines = await self._build_pipelines_of(project_id, code_repository.id)
        for pipeline in build_pipelines:
            await self._delete_pipeline(
                pipeline, ResourceKind.BUILD_STAGE, ResourceKind.BUILD_PIPELINE, "buildPipelineId"
            )

        build_pipeline_ids = {pipeline.id for pipeline in build_pipelines}
        self._report("Listing deploy pipelines")
        for pipeline in await self.provider.list_resources(
            ResourceKind.DEPLOY_PIPELINE, {"projectId": project_id}
        ):
            if pipeline.freeform_tags.get(BUILD_PIPELINE_ID_TAG) in build_pipeline_ids:
                await self._delete_pipeline(
                    pipeline,
                    ResourceKind.DEPLOY_STAGE,
                    ResourceKind.DEPLOY_PIPELINE,
                    "deployPipelineId",
                )

        await self._delete_artifacts(project_id, code_repository.id, repo_name, sub_names, is_last)
        await self._delete_container_repositories(
            compartment_id, project.name, repo_name, sub_names, is_last
        )

        self._report(f"Deleting code repository {repo_name}")
        await self.provider.delete_and_wait(
            ResourceKind.CODE_REPOSITORY, code_repository.id, "Deleting code repository"
        )
        if self.local_cleaner:
            self.local_cleaner.remove_git(folder_name, progress)

        if is_last:
            await self._delete_project(project, compartment_id)

        if self.local_cleaner:
            self.local_cleaner.remove_registration(folder_name, progress)

    async def _build_pipelines_of(
        self, project_id: str, repository_id: str
    ) -> list[ResourceSummary]:
        """Build pipelines building from the code repository."""
        self._report("Listing build pipelines")
        result = []
        for pipeline in await self.provider.list_resources(
            ResourceKind.BUILD_PIPELINE, {"projectId": project_id}
        ):
            code_repo_id = pipeline.freeform_tags.get(CODE_REPO_ID_TAG)
            if code_repo_id:
                if code_repo_id == repository_id:
                    result.append(pipeline)
                continue
            # Untagged pipelines are matched by the build sources of their stages.
            stages = await self.provider.list_resources(
                ResourceKind.BUILD_STAGE, {"buildPipelineId": pipeline.id}
            )
            if any(repository_id in stage.source_repository_ids for stage in stages):
                result.append(pipeline)
        return result

    async def _delete_pipeline(
        self,
        pipeline: ResourceSummary,
        stage_kind: ResourceKind,
        pipeline_kind: ResourceKind,
        pipeline_param: str,
    ) -> None:
        """Delete a pipeline's stages leaf-first, then the pipeline."""
        self._report(f"Processing pipeline {pipeline.name}")
        stages = await self.provider.list_resources(stage_kind, {pipeline_param: pipeline.id})
        for stage in deletion_order(pipeline.id, stages):
            self._report(f"Deleting stage {stage.name}")
            await self.provider.delete_and_wait(stage_kind, stage.id, f"Deleting stage {stage.name}")
        # Deletes overlap on the parent project, so pipelines go one at a time.
        self._report(f"Deleting pipeline {pipeline.name}")
        await self.provider.delete_and_wait(
            pipeline_kind, pipeline.id, f"Deleting pipeline {pipeline.name}"
        )

    async def _delete_artifacts(
        self,
        project_id: str,
        repository_id: str,
        repo_name: str,
        sub_names: Sequence[str],
        is_last: bool,
    ) -> None:
        names = set(deploy_artifact_names(repo_name, sub_names))
        self._report("Listing deploy artifacts")
        for artifact in await self.provider.list_resources(
            ResourceKind.DEPLOY_ARTIFACT, {"projectId": project_id}
        ):
            tags = artifact.freeform_tags
            if artifact.display_name in names:
                message = f"Deleting artifact {artifact.name}"
            elif tags.get(CODE_REPO_RESOURCES_TAG) and tags.get(CODE_REPO_ID_TAG) == repository_id:
                message = f"Deleting list of generated code repository resources {artifact.name}"
            elif is_last and tags.get(PROJECT_RESOURCES_TAG):
                message = f"Deleting list of generated project resources {artifact.name}"
            else:
                continue
            self._report(message)
            await self.provider.delete_and_wait(ResourceKind.DEPLOY_ARTIFACT, artifact.id, message)

    async def _delete_container_repositories(
        self,
        compartment_id: str,
        project_name: str,
        repo_name: str,
        sub_names: Sequence[str],
        is_last: bool,
    ) -> None:
        names = set(container_repository_names(project_name, repo_name, sub_names, is_last))
        self._report("Searching container repositories")
        for repository in await self.provider.list_resources(
            ResourceKind.CONTAINER_REPOSITORY, {"compartmentId": compartment_id}
        ):
            if repository.display_name in names:
                message = f"Deleting container repository {repository.name}"
                self._report(message)
                await self.provider.delete_and_wait(
                    ResourceKind.CONTAINER_REPOSITORY, repository.id, message
                )

    async def _delete_project(self, project: ResourceSummary, compartment_id: str) -> None:
        """Delete the project-level resources, then the project."""
        self._report("Listing project logs")
        for log_group in await self.provider.list_resources(
            ResourceKind.LOG_GROUP, {"compartmentId": compartment_id}
        ):
            for log in await self.provider.list_resources(
                ResourceKind.LOG, {"logGroupId": log_group.id}
            ):
                if log.source_resource == project.id and log.lifecycle_state in LIVE_LOG_STATES:
                    message = f"Deleting log {log.name}"
                    self._report(message)
                    await self.provider.delete_and_wait(
                        ResourceKind.LOG, log.id, message, parent_id=log.log_group_id or log_group.id
                    )

        self._report("Searching artifact repositories")
        for repository in await self.provider.list_resources(
            ResourceKind.ARTIFACT_REPOSITORY, {"compartmentId": compartment_id}
        ):
            if repository.freeform_tags.get(self.project_tag_key) == project.id:
                self._report(f"Deleting artifact repository {repository.name}")
                await self.provider.delete_artifact_repository(repository.id, compartment_id)

        self._report("Searching OKE cluster environments")
        for environment in await self.provider.list_resources(
            ResourceKind.DEPLOY_ENVIRONMENT, {"projectId": project.id}
        ):
            message = f"Deleting OKE cluster environment {environment.name}"
            self._report(message)
            await self.provider.delete_and_wait(ResourceKind.DEPLOY_ENVIRONMENT, environment.id, message)

        self._report("Searching knowledge bases")
        for knowledge_base in await self.provider.list_resources(
            ResourceKind.KNOWLEDGE_BASE, {"compartmentId": compartment_id}
        ):
            tags = knowledge_base.freeform_tags
            if tags.get(USAGE_TAG) == AUDIT_USAGE and tags.get(self.project_tag_key) == project.id:
                self._report(f"Deleting knowledge base {knowledge_base.name}")
                await self.provider.delete_knowledge_base(knowledge_base.id, compartment_id)

        self._report(f"Deleting project {project.name}")
        await self.provider.delete_and_wait(
            ResourceKind.PROJECT, project.id, f"Deleting project {project.name}"
        )
