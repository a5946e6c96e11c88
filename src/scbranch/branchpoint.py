"""
Branchpoint preference layouts.

Lays out the cells around one branchpoint by pseudotime and by their
preference for the two sets of daughter segments, computed from random-walk
visitation.
"""

import numpy as np
import pandas as pd
from typing import Sequence, Any

from .preprocess import TreeData
from .results import SegmentAssignment
from .segments import cells_along_lineage


def preference(x: np.ndarray, y: np.ndarray, signed: bool = False) -> np.ndarray:
    """
    Relative preference of x over y: (x - y) / (x + y).

    Parameters
    ----------
    x, y : ndarray
        Non-negative visitation frequencies.
    signed : bool, default=False
        If False, return the absolute preference.

    Returns
    -------
    pref : ndarray
        Values in [-1, 1] (or [0, 1] unsigned); 0 where x + y == 0.
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    total = x + y
    with np.errstate(invalid='ignore', divide='ignore'):
        pref = np.where(total > 0, (x - y) / total, 0.0)
    if not signed:
        pref = np.abs(pref)
    return pref


def _visit_columns(tree: TreeData, segments: Sequence[Any]) -> pd.DataFrame:
    missing = [s for s in segments if s not in tree.visitation.columns]
    if missing:
        raise ValueError(f"No visitation data for segments: {missing}")
    return tree.visitation[list(segments)]


def branchpoint_preference_layout(
    tree: TreeData,
    assignment: SegmentAssignment,
    lineages_1: Sequence[Any],
    lineages_2: Sequence[Any],
    parent_of_lineages: Sequence[Any],
    opposite_parent: Sequence[Any],
    min_visit: float = 0,
    min_other_pref: float = 0.1
) -> pd.DataFrame:
    """
    Generate the preference layout for a single branchpoint.

    Parameters
    ----------
    tree : TreeData
        Prepared tree tables.
    assignment : SegmentAssignment
        Current cell assignment.
    lineages_1 : sequence
        Segment(s) on the left side of the branchpoint.
    lineages_2 : sequence
        Segment(s) on the right side of the branchpoint.
    parent_of_lineages : sequence
        Segment(s) upstream of the branchpoint.
    opposite_parent : sequence
        Siblings of the parent segment.
    min_visit : float, default=0
        Minimum log10 visitation (walk_1 + walk_2 + 1) to keep a cell.
    min_other_pref : float, default=0.1
        Minimum preference for the parent over its siblings to keep a cell.

    Returns
    -------
    layout : DataFrame indexed by cell
        Columns 'pseudotime', 'walk_1', 'walk_2', 'max_1', 'max_2',
        'b_pref', 'other_pref', 'visited'. b_pref is +1 for cells visited only
        from lineages_1 and -1 for cells visited only from lineages_2.
    """
    lineages_1 = list(lineages_1)
    lineages_2 = list(lineages_2)
    lineage = list(dict.fromkeys(lineages_1 + lineages_2))
    cells = cells_along_lineage(assignment, lineage, tree.segment_parents, remove_root=False)

    def side(segments):
        visits = _visit_columns(tree, segments).loc[cells].fillna(0.0)
        values = visits.to_numpy()
        return values.max(axis=1), np.asarray(segments, dtype=object)[values.argmax(axis=1)]

    walk_1, max_1 = side(lineages_1)
    walk_2, max_2 = side(lineages_2)

    parent_vf = _visit_columns(tree, parent_of_lineages).loc[cells].fillna(0.0).mean(axis=1)
    opposite_vf = _visit_columns(tree, opposite_parent).loc[cells].fillna(0.0).mean(axis=1)

    layout = pd.DataFrame({
        'pseudotime': tree.pseudotime.loc[cells].to_numpy(),
        'walk_1': walk_1,
        'walk_2': walk_2,
        'max_1': max_1,
        'max_2': max_2,
        'b_pref': preference(walk_1, walk_2, signed=True),
        'other_pref': preference(parent_vf.to_numpy(), opposite_vf.to_numpy(), signed=True),
        'visited': np.log10(walk_1 + walk_2 + 1)
    }, index=pd.Index(cells, name='cell'))

    # Drop cells that show no preference for this lineage vs. the rest of the tree
    layout = layout[layout['other_pref'] >= min_other_pref]
    layout = layout[layout['visited'] >= min_visit]

    return layout
