"""Tests for removing one repository from a DevOps project."""
import pytest

from devops_lifecycle.models import ResourceKind
from devops_lifecycle.services.folder_teardown import (
    AUDIT_USAGE,
    BUILD_PIPELINE_ID_TAG,
    CODE_REPO_ID_TAG,
    CODE_REPO_RESOURCES_TAG,
    PROJECT_RESOURCES_TAG,
    USAGE_TAG,
    FolderTeardown,
    container_repository_names,
    deploy_artifact_names,
)
from devops_lifecycle.services.local_cleanup import LocalArtifactCleaner

from conftest import TAG_KEY

PROJECT_TAG = "devops_tooling_projectOCID"


def add_project(provider, repositories=("my_app", "other")) -> None:
    provider.add(ResourceKind.PROJECT, "p1", displayName="Proj", compartmentId="c1")
    for index, name in enumerate(repositories, start=1):
        provider.add(
            ResourceKind.CODE_REPOSITORY,
            f"r{index}",
            name=name,
            projectId="p1",
            freeformTags={TAG_KEY: "t1"},
        )


def add_pipelines(provider) -> None:
    # bp1 is tagged with its code repository, bp2 only references it from a stage
    provider.add(
        ResourceKind.BUILD_PIPELINE, "bp1", displayName="build", projectId="p1",
        freeformTags={CODE_REPO_ID_TAG: "r1"},
    )
    provider.add(ResourceKind.BUILD_STAGE, "bs1", buildPipelineId="bp1", predecessorIds=["bp1"])
    provider.add(ResourceKind.BUILD_STAGE, "bs2", buildPipelineId="bp1", predecessorIds=["bs1"])
    provider.add(ResourceKind.BUILD_PIPELINE, "bp2", displayName="legacy", projectId="p1")
    provider.add(
        ResourceKind.BUILD_STAGE, "bx1", buildPipelineId="bp2",
        buildSourceCollection={"items": [{"repositoryId": "r1"}]},
    )
    provider.add(
        ResourceKind.BUILD_PIPELINE, "bp3", projectId="p1", freeformTags={CODE_REPO_ID_TAG: "r2"}
    )
    provider.add(
        ResourceKind.DEPLOY_PIPELINE, "dp1", projectId="p1",
        freeformTags={BUILD_PIPELINE_ID_TAG: "bp1"},
    )
    provider.add(ResourceKind.DEPLOY_STAGE, "ds1", deployPipelineId="dp1", predecessorIds=["dp1"])
    provider.add(
        ResourceKind.DEPLOY_PIPELINE, "dp3", projectId="p1",
        freeformTags={BUILD_PIPELINE_ID_TAG: "bp3"},
    )


class TestGeneratedNames:

    def test_artifact_names_per_sub_module(self):
        names = deploy_artifact_names("app", ["api", "web"])

        assert "app_dev_fatjar" in names
        assert "app_api_native_docker_image" in names
        assert "app_web_jvm_docker_image" in names
        assert "app_native_docker_image" not in names

    def test_container_repository_names_are_lower_case(self):
        assert container_repository_names("Proj", "App", [], is_last=False) == [
            "proj-app",
            "proj-app-jvm",
        ]

    def test_last_repository_also_owns_project_container_repositories(self):
        names = container_repository_names("proj", "app", ["api"], is_last=True)

        assert names == ["proj-app-api", "proj-app-api-jvm", "proj-api", "proj-api-jvm"]


class TestFolderTeardown:

    @pytest.mark.asyncio
    async def test_repository_resources_are_deleted(self, provider):
        add_project(provider)
        add_pipelines(provider)
        provider.add(ResourceKind.DEPLOY_ARTIFACT, "art1", displayName="my_app_oke_configmap", projectId="p1")
        provider.add(ResourceKind.DEPLOY_ARTIFACT, "art2", displayName="other_oke_configmap", projectId="p1")
        provider.add(
            ResourceKind.DEPLOY_ARTIFACT, "list1", displayName="resources", projectId="p1",
            freeformTags={CODE_REPO_RESOURCES_TAG: "true", CODE_REPO_ID_TAG: "r1"},
        )
        provider.add(
            ResourceKind.DEPLOY_ARTIFACT, "list2", displayName="project resources", projectId="p1",
            freeformTags={PROJECT_RESOURCES_TAG: "true"},
        )
        provider.add(ResourceKind.CONTAINER_REPOSITORY, "cr1", displayName="proj-my_app", compartmentId="c1")
        provider.add(ResourceKind.CONTAINER_REPOSITORY, "cr2", displayName="proj", compartmentId="c1")

        result = await FolderTeardown(provider).undeploy("p1", "c1", "my app")

        assert result.success, result.error
        assert provider.deleted_ids() == [
            "bs2", "bs1", "bp1", "bx1", "bp2", "ds1", "dp1", "art1", "list1", "cr1", "r1",
        ]
        assert provider.exists(ResourceKind.PROJECT, "p1")

    @pytest.mark.asyncio
    async def test_last_repository_takes_the_project_with_it(self, provider):
        add_project(provider, repositories=("my_app",))
        provider.add(ResourceKind.CONTAINER_REPOSITORY, "cr1", displayName="proj", compartmentId="c1")
        provider.add(ResourceKind.LOG_GROUP, "lg1", compartmentId="c1")
        provider.add(
            ResourceKind.LOG, "log1", logGroupId="lg1",
            configuration={"source": {"resource": "p1"}},
        )
        provider.add(
            ResourceKind.LOG, "log2", logGroupId="lg1",
            configuration={"source": {"resource": "p2"}},
        )
        provider.add(
            ResourceKind.LOG, "log3", logGroupId="lg1", lifecycleState="DELETING",
            configuration={"source": {"resource": "p1"}},
        )
        provider.add(
            ResourceKind.ARTIFACT_REPOSITORY, "ar1", compartmentId="c1",
            freeformTags={PROJECT_TAG: "p1"},
        )
        provider.add(ResourceKind.DEPLOY_ENVIRONMENT, "env1", projectId="p1")
        provider.add(
            ResourceKind.KNOWLEDGE_BASE, "kb1", compartmentId="c1",
            freeformTags={USAGE_TAG: AUDIT_USAGE, PROJECT_TAG: "p1"},
        )
        provider.add(
            ResourceKind.KNOWLEDGE_BASE, "kb2", compartmentId="c1",
            freeformTags={PROJECT_TAG: "p1"},
        )
        messages = []

        result = await FolderTeardown(provider).undeploy(
            "p1", "c1", "my app", progress=messages.append
        )

        assert result.success, result.error
        assert provider.deleted_ids() == ["cr1", "r1", "log1", "ar1", "env1", "kb1", "p1"]
        assert messages[-1] == "Deleting project Proj"

    @pytest.mark.asyncio
    async def test_cyclic_pipeline_aborts_before_deleting_stages(self, provider):
        add_project(provider)
        provider.add(
            ResourceKind.BUILD_PIPELINE, "bp1", projectId="p1", freeformTags={CODE_REPO_ID_TAG: "r1"}
        )
        provider.add(ResourceKind.BUILD_STAGE, "bs1", buildPipelineId="bp1", predecessorIds=["bs2"])
        provider.add(ResourceKind.BUILD_STAGE, "bs2", buildPipelineId="bp1", predecessorIds=["bs1"])

        result = await FolderTeardown(provider).undeploy("p1", "c1", "my app")

        assert not result.success
        assert "Inconsistent pipeline structure for bp1" in result.error
        assert provider.deleted == []

    @pytest.mark.asyncio
    async def test_untagged_repository_is_not_touched(self, provider):
        provider.add(ResourceKind.PROJECT, "p1", displayName="Proj")
        provider.add(ResourceKind.CODE_REPOSITORY, "r1", name="my_app", projectId="p1")

        result = await FolderTeardown(provider).undeploy("p1", "c1", "my app")

        assert not result.success
        assert "failed to resolve code repository my_app" in result.error
        assert provider.deleted == []

    @pytest.mark.asyncio
    async def test_local_state_is_removed(self, provider, tmp_path):
        add_project(provider)
        folder = tmp_path / "my app"
        (folder / ".git").mkdir(parents=True)
        (folder / ".devops").mkdir()
        (folder / ".vscode").mkdir()
        (folder / ".vscode" / "devops.json").write_text("{}")
        (folder / "pom.xml").write_text("<project/>")
        teardown = FolderTeardown(provider, local_cleaner=LocalArtifactCleaner(str(tmp_path)))

        result = await teardown.undeploy("p1", "c1", "my app")

        assert result.success, result.error
        assert not (folder / ".git").exists()
        assert not (folder / ".devops").exists()
        assert not (folder / ".vscode" / "devops.json").exists()
        assert (folder / "pom.xml").exists()
