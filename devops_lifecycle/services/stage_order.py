"""Leaf-first deletion order for pipeline stages."""

from collections import deque
from typing import Sequence

from devops_lifecycle.errors import InconsistentPipelineError
from devops_lifecycle.models import ResourceSummary


def _stage_edges(pipeline_id: str, stage: ResourceSummary) -> list[str]:
    # Self references and the owning pipeline are not stage dependencies.
    return [p for p in stage.predecessor_ids if p != stage.id and p != pipeline_id]


def _leaf_first(
    owner_id: str,
    stages: Sequence[ResourceSummary],
    edges: dict[str, list[str]],
) -> list[ResourceSummary]:
    by_id = {stage.id: stage for stage in stages}
    dependents = {stage.id: 0 for stage in stages}
    for stage in stages:
        for predecessor in edges[stage.id]:
            dependents[predecessor] += 1

    ready = deque(stage.id for stage in stages if dependents[stage.id] == 0)
    order: list[ResourceSummary] = []
    while ready:
        stage = by_id[ready.popleft()]
        order.append(stage)
        for predecessor in edges[stage.id]:
            dependents[predecessor] -= 1
            if dependents[predecessor] == 0:
                ready.append(predecessor)

    if len(order) < len(stages):
        done = {stage.id for stage in order}
        raise InconsistentPipelineError(
            owner_id,
            [stage.id for stage in stages if stage.id not in done],
            reason="cyclic stage dependencies",
        )
    return order


def deletion_order(pipeline_id: str, stages: Sequence[ResourceSummary]) -> list[ResourceSummary]:
    """Order stages so that no stage is deleted before the stages depending on it.

    Each stage counts the stages naming it as predecessor. Stages with a zero
    count are taken first, in input order, and taking one releases its own
    predecessors. Raises InconsistentPipelineError on a dangling predecessor
    or a cycle.
    """
    known = {stage.id for stage in stages}
    edges: dict[str, list[str]] = {}
    for stage in stages:
        edges[stage.id] = _stage_edges(pipeline_id, stage)
        for predecessor in edges[stage.id]:
            if predecessor not in known:
                raise InconsistentPipelineError(
                    pipeline_id,
                    [stage.id],
                    reason=f"stage {stage.id} references unknown predecessor {predecessor}",
                )
    return _leaf_first(pipeline_id, stages, edges)


def sweep_order(scope_id: str, stages: Sequence[ResourceSummary]) -> list[ResourceSummary]:
    """Leaf-first order for stages swept by tag from a whole scope.

    The stages of several pipelines are mixed and some are deleted already,
    so predecessors outside the given stages (pipeline ids included) are
    ignored. A cycle raises InconsistentPipelineError.
    """
    known = {stage.id for stage in stages}
    edges = {
        stage.id: [p for p in stage.predecessor_ids if p != stage.id and p in known]
        for stage in stages
    }
    return _leaf_first(scope_id, stages, edges)
