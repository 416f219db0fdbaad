"""Resource tree of the workspace folders, populated from provider listings."""

from typing import Optional

from devops_lifecycle.models import FolderSpec, ResourceKind, ResourceSummary
from devops_lifecycle.provider_client import ProviderClient
from devops_lifecycle.tree.nodes import Capability, NodeTree, TreeNode, text_node

PARTIALLY_DEPLOYED_LABEL = "<partially deployed>"
NOT_DEPLOYED_LABEL = "<not in DevOps project>"

# (label, resource kind, scope, context kind, stage kind, stage parent param)
CATEGORIES = (
    ("Code Repositories", ResourceKind.CODE_REPOSITORY, "project", "code_repository", None, None),
    (
        "Build Pipelines",
        ResourceKind.BUILD_PIPELINE,
        "project",
        "build_pipeline",
        ResourceKind.BUILD_STAGE,
        "buildPipelineId",
    ),
    (
        "Deploy Pipelines",
        ResourceKind.DEPLOY_PIPELINE,
        "project",
        "deploy_pipeline",
        ResourceKind.DEPLOY_STAGE,
        "deployPipelineId",
    ),
    ("Artifacts", ResourceKind.DEPLOY_ARTIFACT, "project", "deploy_artifact", None, None),
    (
        "Container Repositories",
        ResourceKind.CONTAINER_REPOSITORY,
        "compartment",
        "container_repository",
        None,
        None,
    ),
    (
        "Cluster Environments",
        ResourceKind.DEPLOY_ENVIRONMENT,
        "project",
        "deploy_environment",
        None,
        None,
    ),
    ("Knowledge Bases", ResourceKind.KNOWLEDGE_BASE, "compartment", "knowledge_base", None, None),
)


def _live(resources: list[ResourceSummary]) -> list[ResourceSummary]:
    return [r for r in resources if r.lifecycle_state != "DELETED"]


def _stages_fetch(
    provider: ProviderClient,
    pipeline_id: str,
    stage_kind: ResourceKind,
    parent_param: str,
):
    async def fetch(tree: NodeTree) -> list[TreeNode]:
        stages = await provider.list_resources(stage_kind, {parent_param: pipeline_id})
        return [
            TreeNode(
                label=stage.name,
                description=stage.lifecycle_state,
                context_kind=f"{stage_kind.value}_item",
            )
            for stage in _live(stages)
        ]

    return fetch


def _category_fetch(
    provider: ProviderClient,
    kind: ResourceKind,
    params: dict[str, str],
    context_kind: str,
    stage_kind: Optional[ResourceKind],
    stage_param: Optional[str],
):
    async def fetch(tree: NodeTree) -> list[TreeNode]:
        resources = await provider.list_resources(kind, params)
        nodes = []
        for resource in _live(resources):
            stages = None
            if stage_kind is not None:
                stages = _stages_fetch(provider, resource.id, stage_kind, stage_param)
            nodes.append(
                TreeNode(
                    label=resource.name,
                    description=resource.lifecycle_state,
                    context_kind=context_kind,
                    capabilities=Capability.RELOADABLE if stages else Capability.NONE,
                    fetch=stages,
                )
            )
        return nodes

    return fetch


def _config_fetch(provider: ProviderClient, project_id: str, compartment_id: Optional[str]):
    async def fetch(tree: NodeTree) -> list[TreeNode]:
        nodes = []
        for label, kind, scope, context_kind, stage_kind, stage_param in CATEGORIES:
            if scope == "project":
                params = {"projectId": project_id}
            elif compartment_id:
                params = {"compartmentId": compartment_id}
            else:
                continue
            nodes.append(
                TreeNode(
                    label=label,
                    context_kind=f"{context_kind}s",
                    capabilities=Capability.RELOADABLE,
                    fetch=_category_fetch(
                        provider, kind, params, context_kind, stage_kind, stage_param
                    ),
                )
            )
        return nodes

    return fetch


def build_folder_tree(
    tree: NodeTree,
    provider: ProviderClient,
    folder: TreeNode,
    spec: FolderSpec,
) -> None:
    """Populate the node of one workspace folder."""
    if spec.partially_deployed:
        tree.set_children(folder.id, [text_node(PARTIALLY_DEPLOYED_LABEL, "partially_deployed")])
        return
    if not spec.project_id:
        tree.set_children(folder.id, [text_node(NOT_DEPLOYED_LABEL, "not_deployed")])
        return

    config = TreeNode(
        label="DevOps Project",
        description=spec.project_id,
        context_kind="devops_config",
        capabilities=Capability.RELOADABLE,
        fetch=_config_fetch(provider, spec.project_id, spec.compartment_id),
    )
    tree.set_children(folder.id, [config])
    # The folder shows the categories directly.
    tree.collapse(config.id, folder.id)


def build_workspace_tree(
    tree: NodeTree,
    provider: ProviderClient,
    folders: list[FolderSpec],
) -> list[TreeNode]:
    """Replace the tree roots with one node per workspace folder."""
    roots = [
        TreeNode(label=spec.name, context_kind="folder")
        for spec in folders
    ]
    tree.set_roots(roots)
    for root, spec in zip(roots, folders):
        build_folder_tree(tree, provider, root, spec)
    return roots
