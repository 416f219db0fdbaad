"""Resource tree endpoints."""

from fastapi import APIRouter, Depends, HTTPException, status

from devops_lifecycle.context import OrchestratorContext
from devops_lifecycle.models import TreeChildrenResponse
from devops_lifecycle.routes.dependencies import get_context
from devops_lifecycle.tree.nodes import NodeTree, TreeNode

router = APIRouter(prefix="/api/v1/tree", tags=["resource tree"])


def _node(tree: NodeTree, node_id: str) -> TreeNode:
    node = tree.find(node_id)
    if node is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Node {node_id} not found",
        )
    return node


@router.get(
    "/nodes",
    response_model=TreeChildrenResponse,
    summary="List root nodes",
)
async def list_roots(
    context: OrchestratorContext = Depends(get_context),
) -> TreeChildrenResponse:
    tree = context.tree
    return TreeChildrenResponse(
        node_id=None,
        revision=tree.broadcaster.revision,
        children=[tree.view(node) for node in tree.roots()],
    )


@router.get(
    "/nodes/{node_id}/children",
    response_model=TreeChildrenResponse,
    summary="List node children",
    description="""Children of a node. The first request for an unfetched node
    starts listing its resources and answers with a single `<loading...>` node.""",
)
async def list_children(
    node_id: str,
    context: OrchestratorContext = Depends(get_context),
) -> TreeChildrenResponse:
    tree = context.tree
    _node(tree, node_id)
    children = tree.get_children(node_id)
    return TreeChildrenResponse(
        node_id=node_id,
        revision=tree.broadcaster.revision,
        children=[tree.view(node) for node in children],
    )


@router.post(
    "/nodes/{node_id}/reload",
    response_model=TreeChildrenResponse,
    summary="Reload node",
    description="Forget the children of a node and list them again",
)
async def reload_node(
    node_id: str,
    context: OrchestratorContext = Depends(get_context),
) -> TreeChildrenResponse:
    tree = context.tree
    node = _node(tree, node_id)
    if not node.is_lazy:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Node {node.label} cannot be reloaded",
        )
    tree.reload(node_id)
    children = tree.get_children(node_id)
    return TreeChildrenResponse(
        node_id=node_id,
        revision=tree.broadcaster.revision,
        children=[tree.view(child) for child in children],
    )
