"""
Assignment of cells to tree segments.

Each cell goes to the segment whose random walks visited it most, among the
segments whose pseudotime window contains the cell's pseudotime.
"""

import numpy as np
import pandas as pd
from typing import Optional, Union, List, Any, Tuple, Mapping, Iterable

from .preprocess import TreeData, prepare_tree_data, as_window_frame
from .results import SegmentAssignment, invert_assignment


def candidate_mask(pseudotime: np.ndarray, segment_windows: pd.DataFrame) -> np.ndarray:
    """
    Boolean (n_cells, n_segments) mask of segments whose window contains each cell.

    Windows are closed intervals. Cells with missing pseudotime have no candidates.
    """
    pt = np.asarray(pseudotime, dtype=float)[:, None]
    start = segment_windows['start'].to_numpy(dtype=float)[None, :]
    end = segment_windows['end'].to_numpy(dtype=float)[None, :]
    return (pt >= start) & (pt <= end)


def assign_tree_cells(tree: TreeData, verbose: bool = False) -> SegmentAssignment:
    """
    Assign every cell of a prepared tree to at most one segment.

    Parameters
    ----------
    tree : TreeData
        Prepared tree tables.
    verbose : bool, default=False
        Print a summary.

    Returns
    -------
    assignment : SegmentAssignment

    Notes
    -----
    Among candidate segments, missing visitation is ignored and the largest raw
    visitation wins. Ties go to the segment listed first in tree.segment_windows.
    A cell without candidates, or without visitation data for any candidate,
    is unassigned.
    """
    segments = tree.segments
    candidates = candidate_mask(tree.pseudotime.to_numpy(), tree.segment_windows)
    visits = tree.visitation.to_numpy(dtype=float)

    eligible = candidates & ~np.isnan(visits)
    scores = np.where(eligible, visits, -np.inf)
    # argmax returns the first maximum, i.e. the earliest segment in window order
    best = np.argmax(scores, axis=1) if len(segments) else np.zeros(len(scores), dtype=int)
    assigned = eligible.any(axis=1)

    cells = tree.cells
    cell_segment = pd.Series(
        [segments[i] for i in best[assigned]],
        index=cells[assigned],
        dtype=object,
        name='segment'
    )
    unassigned = np.asarray(cells[~assigned], dtype=object)

    if verbose:
        print(f"Assigned {assigned.sum()} of {len(cells)} cells to {len(segments)} segments"
              f" ({len(unassigned)} unassigned)")

    return SegmentAssignment(
        cell_segment=cell_segment,
        segment_cells=invert_assignment(cell_segment, segments),
        unassigned=unassigned,
        segments=segments,
        pseudotime_key=tree.pseudotime_key
    )


def assign_cells_to_segments(
    pseudotime: Union[pd.Series, pd.DataFrame],
    visitation: pd.DataFrame,
    segment_windows: Union[pd.DataFrame, Mapping[Any, Tuple[float, float]]],
    pseudotime_key: Optional[str] = None,
    verbose: bool = False
) -> SegmentAssignment:
    """
    Assign cells to tree segments by pseudotime-windowed maximum visitation.

    Parameters
    ----------
    pseudotime : Series or DataFrame
        Cell-indexed pseudotime (one column per definition for a DataFrame).
    visitation : DataFrame
        Cell x segment raw visitation frequencies.
    segment_windows : DataFrame or dict
        Closed pseudotime window ('start', 'end') per segment. Row order
        decides ties.
    pseudotime_key : str, optional
        Pseudotime column to use.
    verbose : bool, default=False
        Print a summary.

    Returns
    -------
    assignment : SegmentAssignment
        Cell -> segment mapping, its inverse, and the unassigned cells.
        Recomputed from scratch on every call.
    """
    tree = prepare_tree_data(
        pseudotime=pseudotime,
        visitation=visitation,
        segment_windows=segment_windows,
        pseudotime_key=pseudotime_key
    )
    return assign_tree_cells(tree, verbose=verbose)


def segment_ancestors(segment, segment_parents: Mapping[Any, Any]) -> List[Any]:
    """
    Segment followed by its parents up to the root.

    Raises
    ------
    ValueError
        If the parent relationships contain a cycle.
    """
    lineage = [segment]
    parent = segment_parents.get(segment)
    while parent is not None:
        if parent in lineage:
            raise ValueError(f"Cycle in segment parents at segment {parent!r}")
        lineage.append(parent)
        parent = segment_parents.get(parent)
    return lineage


def cells_along_lineage(
    assignment: SegmentAssignment,
    segments: Iterable[Any],
    segment_parents: Mapping[Any, Any],
    remove_root: bool = False
) -> List[Any]:
    """
    Cells assigned to the given segments or any of their ancestors.

    Parameters
    ----------
    assignment : SegmentAssignment
        Current cell assignment.
    segments : iterable
        Segments whose lineages to collect.
    segment_parents : dict
        Segment -> parent segment.
    remove_root : bool, default=False
        Exclude cells assigned to the root segment.

    Returns
    -------
    cells : list
        Cells in assignment order.
    """
    lineage = set()
    for segment in segments:
        if segment not in assignment.segment_cells:
            raise ValueError(f"Unknown segment {segment!r}")
        lineage.update(segment_ancestors(segment, segment_parents))

    if remove_root:
        lineage = {s for s in lineage if segment_parents.get(s) is not None}

    return [cell for cell, seg in assignment.cell_segment.items() if seg in lineage]


def segment_label_positions(
    segment_windows: Union[pd.DataFrame, Mapping[Any, Tuple[float, float]]]
) -> pd.Series:
    """Pseudotime at which each segment is labeled: the middle of its window."""
    windows = as_window_frame(segment_windows)
    return windows[['start', 'end']].mean(axis=1).rename('pseudotime')
