"""Tests for leaf-first stage ordering."""
import pytest

from devops_lifecycle.errors import InconsistentPipelineError
from devops_lifecycle.models import ResourceSummary
from devops_lifecycle.services.stage_order import deletion_order, sweep_order


def stage(stage_id: str, *predecessors: str) -> ResourceSummary:
    return ResourceSummary(id=stage_id, predecessor_ids=list(predecessors))


def ids(stages) -> list[str]:
    return [s.id for s in stages]


class TestDeletionOrder:

    def test_chain_is_deleted_from_the_leaf(self):
        # A -> B -> C, A is the first stage after the pipeline
        stages = [stage("A", "P"), stage("B", "A"), stage("C", "B")]

        assert ids(deletion_order("P", stages)) == ["C", "B", "A"]

    def test_diamond_deletes_each_stage_after_its_dependents(self):
        stages = [
            stage("A", "P"),
            stage("B", "A"),
            stage("C", "A"),
            stage("D", "B", "C"),
        ]

        order = ids(deletion_order("P", stages))

        assert order[0] == "D"
        assert order[-1] == "A"
        assert set(order[1:3]) == {"B", "C"}

    def test_independent_stages_keep_input_order(self):
        stages = [stage("X", "P"), stage("Y", "P"), stage("Z", "P")]

        assert ids(deletion_order("P", stages)) == ["X", "Y", "Z"]

    def test_self_and_pipeline_references_are_ignored(self):
        stages = [stage("A", "P", "A"), stage("B", "A", "B")]

        assert ids(deletion_order("P", stages)) == ["B", "A"]

    def test_empty_pipeline(self):
        assert deletion_order("P", []) == []

    def test_cycle_raises_with_unresolved_stages(self):
        stages = [stage("A", "P"), stage("B", "A", "C"), stage("C", "B")]

        with pytest.raises(InconsistentPipelineError) as exc:
            deletion_order("P", stages)

        assert exc.value.pipeline_id == "P"
        assert set(exc.value.unresolved) == {"A", "B", "C"}

    def test_unknown_predecessor_is_inconsistent(self):
        stages = [stage("A", "P"), stage("B", "gone")]

        with pytest.raises(InconsistentPipelineError) as exc:
            deletion_order("P", stages)

        assert exc.value.unresolved == ["B"]
        assert "gone" in str(exc.value)


class TestSweepOrder:

    def test_every_stage_waits_for_all_of_its_dependents(self):
        # X <- Y <- {Z1, Z2}
        stages = [stage("X", "P"), stage("Y", "X"), stage("Z1", "Y"), stage("Z2", "Y")]

        order = ids(sweep_order("c1", stages))

        assert order == ["Z1", "Z2", "Y", "X"]

    def test_deep_chain_beats_wide_fan_in(self):
        # A has one dependent at depth three; F has two direct dependents.
        stages = [
            stage("A", "P1"),
            stage("B", "A"),
            stage("C", "B"),
            stage("F", "P2"),
            stage("G", "F"),
            stage("H", "F"),
        ]

        order = ids(sweep_order("c1", stages))

        for predecessor, dependent in [("A", "B"), ("B", "C"), ("F", "G"), ("F", "H")]:
            assert order.index(dependent) < order.index(predecessor)

    def test_predecessors_outside_the_set_are_ignored(self):
        stages = [stage("A", "deleted-already"), stage("B", "B")]

        assert ids(sweep_order("c1", stages)) == ["A", "B"]

    def test_cycle_raises(self):
        stages = [stage("A", "B"), stage("B", "A"), stage("C", "P")]

        with pytest.raises(InconsistentPipelineError) as exc:
            sweep_order("c1", stages)

        assert set(exc.value.unresolved) == {"A", "B"}
