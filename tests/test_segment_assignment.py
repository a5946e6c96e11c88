"""
Test assignment of cells to tree segments.
"""

import numpy as np
import pandas as pd
import pytest
from types import SimpleNamespace

from scbranch.preprocess import prepare_tree_data, prepare_from_anndata, visitation_from_columns
from scbranch.segments import (
    assign_cells_to_segments,
    assign_tree_cells,
    candidate_mask,
    cells_along_lineage,
    segment_ancestors,
    segment_label_positions
)
from scbranch.synthetic import generate_synthetic_tree


@pytest.fixture
def two_segments():
    """Segments A=[0.0, 0.5] and B=[0.3, 1.0] with four cells."""
    pseudotime = pd.Series([0.4, 0.4, 0.9, 1.5], index=["c1", "c2", "c3", "c4"])
    visitation = pd.DataFrame(
        {"A": [10.0, 2.0, 7.0, 1.0], "B": [3.0, 9.0, 5.0, 1.0]},
        index=["c1", "c2", "c3", "c4"]
    )
    windows = {"A": (0.0, 0.5), "B": (0.3, 1.0)}
    return pseudotime, visitation, windows


class TestAssignment:
    """Test windowed maximum-visitation assignment."""

    def test_concrete_scenario(self, two_segments):
        """Each cell goes to its most-visiting candidate; uncovered cells are unassigned."""
        assignment = assign_cells_to_segments(*two_segments)

        assert assignment.segment_of("c1") == "A"
        assert assignment.segment_of("c2") == "B"
        assert assignment.segment_of("c3") == "B"
        assert assignment.segment_of("c4") is None
        assert list(assignment.unassigned) == ["c4"]

    def test_inverse_index(self, two_segments):
        """Segment membership should be the inverse of the cell mapping."""
        assignment = assign_cells_to_segments(*two_segments)

        assert assignment.cells_in("A") == frozenset({"c1"})
        assert assignment.cells_in("B") == frozenset({"c2", "c3"})
        assert "c4" not in assignment.cells_in("A") | assignment.cells_in("B")

    def test_empty_segment_present(self):
        """Segments with no cells still appear in the membership index."""
        pseudotime = pd.Series([0.1], index=["c1"])
        visitation = pd.DataFrame({"A": [1.0], "B": [5.0]}, index=["c1"])
        assignment = assign_cells_to_segments(pseudotime, visitation, {"A": (0, 0.5), "B": (0.6, 1)})

        assert assignment.cells_in("B") == frozenset()

    def test_window_bounds_inclusive(self):
        """Cells exactly on a window boundary are candidates."""
        pseudotime = pd.Series([0.0, 0.5], index=["lo", "hi"])
        visitation = pd.DataFrame({"A": [1.0, 1.0]}, index=["lo", "hi"])
        assignment = assign_cells_to_segments(pseudotime, visitation, {"A": (0.0, 0.5)})

        assert len(assignment.unassigned) == 0

    def test_tie_goes_to_first_window(self):
        """Equal visitation is resolved by the order of segment windows."""
        pseudotime = pd.Series([0.4], index=["c1"])
        visitation = pd.DataFrame({"A": [5.0], "B": [5.0]}, index=["c1"])

        first_a = assign_cells_to_segments(pseudotime, visitation, {"A": (0, 0.5), "B": (0.3, 1)})
        first_b = assign_cells_to_segments(pseudotime, visitation, {"B": (0.3, 1), "A": (0, 0.5)})

        assert first_a.segment_of("c1") == "A"
        assert first_b.segment_of("c1") == "B"

    def test_missing_visitation_ignored(self):
        """Candidates without visitation data are skipped."""
        pseudotime = pd.Series([0.4], index=["c1"])
        visitation = pd.DataFrame({"A": [np.nan], "B": [1.0]}, index=["c1"])
        assignment = assign_cells_to_segments(pseudotime, visitation, {"A": (0, 0.5), "B": (0.3, 1)})

        assert assignment.segment_of("c1") == "B"

    def test_all_candidates_missing_visitation(self):
        """A cell with no visitation for any candidate is unassigned, not an error."""
        pseudotime = pd.Series([0.4, 0.45], index=["c1", "c2"])
        visitation = pd.DataFrame({"A": [np.nan, 2.0]}, index=["c1", "c2"])
        windows = {"A": (0, 0.5), "B": (0.3, 1)}
        assignment = assign_cells_to_segments(pseudotime, visitation, windows)

        assert list(assignment.unassigned) == ["c1"]
        assert assignment.segment_of("c2") == "A"

    def test_cell_missing_from_visitation(self):
        """Cells absent from the visitation table are unassigned."""
        pseudotime = pd.Series([0.4, 0.4], index=["c1", "c2"])
        visitation = pd.DataFrame({"A": [3.0]}, index=["c1"])
        assignment = assign_cells_to_segments(pseudotime, visitation, {"A": (0, 1)})

        assert list(assignment.unassigned) == ["c2"]

    def test_missing_pseudotime_unassigned(self):
        pseudotime = pd.Series([np.nan], index=["c1"])
        visitation = pd.DataFrame({"A": [3.0]}, index=["c1"])
        assignment = assign_cells_to_segments(pseudotime, visitation, {"A": (0, 1)})

        assert list(assignment.unassigned) == ["c1"]

    def test_idempotent(self, two_segments):
        """Re-running on identical inputs gives identical assignments."""
        first = assign_cells_to_segments(*two_segments)
        second = assign_cells_to_segments(*two_segments)

        assert first.cell_segment.equals(second.cell_segment)
        assert first.segment_cells == second.segment_cells
        assert np.array_equal(first.unassigned, second.unassigned)

    def test_assigned_segment_is_candidate(self):
        """Every assigned segment's window contains the cell's pseudotime."""
        data = generate_synthetic_tree(n_cells_per_segment=40, random_state=3)
        pt = data['pseudotime']['pseudotime']
        rng = np.random.default_rng(0)
        visitation = pd.DataFrame(
            rng.uniform(0, 100, size=data['visitation'].shape),
            index=data['visitation'].index, columns=data['visitation'].columns
        )
        windows = data['segment_windows']
        assignment = assign_cells_to_segments(data['pseudotime'], visitation, windows)

        for cell, segment in assignment.cell_segment.items():
            assert windows.loc[segment, 'start'] <= pt[cell] <= windows.loc[segment, 'end']

    def test_recovers_synthetic_membership(self):
        """On a well-separated synthetic tree every cell gets its true segment."""
        data = generate_synthetic_tree(n_cells_per_segment=30, random_state=0)
        assignment = assign_cells_to_segments(
            data['pseudotime'], data['visitation'], data['segment_windows']
        )

        assert len(assignment.unassigned) == 0
        assert assignment.cell_segment.equals(
            data['true_segment'].astype(object).loc[assignment.cell_segment.index]
        )

    def test_pseudotime_key_selects_column(self):
        """With several pseudotime definitions the key selects one."""
        pseudotime = pd.DataFrame({"pt_a": [0.2], "pt_b": [0.8]}, index=["c1"])
        visitation = pd.DataFrame({"A": [1.0], "B": [1.0]}, index=["c1"])
        windows = {"A": (0, 0.5), "B": (0.5, 1)}

        assert assign_cells_to_segments(pseudotime, visitation, windows, "pt_a").segment_of("c1") == "A"
        assert assign_cells_to_segments(pseudotime, visitation, windows, "pt_b").segment_of("c1") == "B"

        with pytest.raises(ValueError, match="pseudotime_key"):
            assign_cells_to_segments(pseudotime, visitation, windows)

    def test_to_frame_includes_unassigned(self, two_segments):
        frame = assign_cells_to_segments(*two_segments).to_frame()

        assert set(frame.index) == {"c1", "c2", "c3", "c4"}
        assert frame.loc["c4", "segment"] is None


class TestTreeInputs:
    """Test input preparation and validation."""

    def test_candidate_mask(self):
        windows = pd.DataFrame({'start': [0.0, 0.3], 'end': [0.5, 1.0]}, index=["A", "B"])
        mask = candidate_mask(np.array([0.1, 0.4, 0.9, np.nan]), windows)

        assert mask.tolist() == [[True, False], [True, True], [False, True], [False, False]]

    def test_reversed_window_rejected(self):
        pseudotime = pd.Series([0.4], index=["c1"])
        visitation = pd.DataFrame({"A": [1.0]}, index=["c1"])
        with pytest.raises(ValueError, match="start > end"):
            assign_cells_to_segments(pseudotime, visitation, {"A": (0.8, 0.2)})

    def test_negative_visitation_rejected(self):
        pseudotime = pd.Series([0.4], index=["c1"])
        visitation = pd.DataFrame({"A": [-1.0]}, index=["c1"])
        with pytest.raises(ValueError, match="non-negative"):
            assign_cells_to_segments(pseudotime, visitation, {"A": (0, 1)})

    def test_visitation_from_columns(self):
        table = pd.DataFrame({
            "visitfreq.raw.1": [1.0, 2.0],
            "visitfreq.raw.2": [3.0, 4.0],
            "other": [0, 0]
        }, index=["c1", "c2"])
        visitation = visitation_from_columns(table)

        assert list(visitation.columns) == ["1", "2"]
        assert visitation.loc["c2", "2"] == 4.0

    def test_prepare_from_anndata(self):
        """Pseudotime and prefixed visitation columns are read from adata.obs."""
        obs = pd.DataFrame({
            "pseudotime": [0.1, 0.8],
            "visitfreq.raw.1": [10.0, 1.0],
            "visitfreq.raw.2": [1.0, 10.0],
        }, index=["c1", "c2"])
        adata = SimpleNamespace(obs=obs)

        tree = prepare_from_anndata(adata, {1: (0.0, 0.5), 2: (0.4, 1.0)}, {2: 1})
        assignment = assign_tree_cells(tree)

        assert tree.segments == ("1", "2")
        assert tree.root == "1"
        assert assignment.segment_of("c1") == "1"
        assert assignment.segment_of("c2") == "2"


class TestLineage:
    """Test lineage traversal."""

    @pytest.fixture
    def tree_assignment(self):
        data = generate_synthetic_tree(n_cells_per_segment=10, random_state=0)
        tree = prepare_tree_data(
            data['pseudotime'], data['visitation'], data['segment_windows'],
            segment_parents=data['segment_parents']
        )
        return tree, assign_tree_cells(tree)

    def test_ancestors(self):
        assert segment_ancestors("4", {"4": "2", "2": "1"}) == ["4", "2", "1"]

    def test_cycle_detected(self):
        with pytest.raises(ValueError, match="Cycle"):
            segment_ancestors("a", {"a": "b", "b": "a"})

    def test_lineage_includes_parents(self, tree_assignment):
        tree, assignment = tree_assignment
        cells = cells_along_lineage(assignment, ["2"], tree.segment_parents)

        assert set(cells) == assignment.cells_in("2") | assignment.cells_in("1")

    def test_remove_root(self, tree_assignment):
        tree, assignment = tree_assignment
        cells = cells_along_lineage(assignment, ["2"], tree.segment_parents, remove_root=True)

        assert set(cells) == assignment.cells_in("2")

    def test_unknown_segment(self, tree_assignment):
        tree, assignment = tree_assignment
        with pytest.raises(ValueError, match="Unknown segment"):
            cells_along_lineage(assignment, ["9"], tree.segment_parents)

    def test_label_positions(self):
        positions = segment_label_positions({"A": (0.0, 0.4), "B": (0.4, 1.0)})

        assert positions["A"] == pytest.approx(0.2)
        assert positions["B"] == pytest.approx(0.7)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
