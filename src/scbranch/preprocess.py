"""
Tree input preparation.

Normalizes and validates the tables that describe a reconstructed tree
(pseudotime per cell, random-walk visitation per cell and segment, segment
pseudotime windows and parents) and bundles them into an immutable TreeData.
"""

import pandas as pd
from typing import Optional, Union, Dict, Any, Tuple, Mapping
from dataclasses import dataclass, field


VISIT_PREFIX = "visitfreq.raw."


@dataclass(frozen=True, eq=False)
class TreeData:
    """
    Read-only tree tables for segment assignment and branchpoint layouts.

    Attributes
    ----------
    pseudotime : Series of shape (n_cells,)
        Pseudotime of each cell, indexed by cell.
    visitation : DataFrame of shape (n_cells, n_segments)
        Raw visitation frequency of each cell by walks from each segment.
        Columns are segment ids, rows aligned with pseudotime.
    segment_windows : DataFrame of shape (n_segments, 2)
        Closed pseudotime window ('start', 'end') of each segment, indexed by segment.
        Row order is the tie-break order for assignment.
    segment_parents : dict
        Segment -> parent segment. The root has no entry (or None).
    pseudotime_key : str, optional
        Name of the pseudotime definition used.
    """
    pseudotime: pd.Series
    visitation: pd.DataFrame
    segment_windows: pd.DataFrame
    segment_parents: Dict[Any, Any] = field(default_factory=dict)
    pseudotime_key: Optional[str] = None

    @property
    def cells(self) -> pd.Index:
        return self.pseudotime.index

    @property
    def segments(self) -> Tuple:
        return tuple(self.segment_windows.index)

    @property
    def root(self):
        """Segment without a parent among the known segments."""
        roots = [s for s in self.segments if self.segment_parents.get(s) is None]
        return roots[0] if roots else None


def as_pseudotime_series(
    pseudotime: Union[pd.Series, pd.DataFrame],
    pseudotime_key: Optional[str] = None
) -> pd.Series:
    """
    Select one pseudotime definition as a float Series.

    Parameters
    ----------
    pseudotime : Series or DataFrame
        Cell-indexed pseudotime. A DataFrame holds one column per definition.
    pseudotime_key : str, optional
        Column to use. Required when the DataFrame has more than one column.
    """
    if isinstance(pseudotime, pd.DataFrame):
        if pseudotime_key is None:
            if pseudotime.shape[1] != 1:
                raise ValueError(
                    f"pseudotime_key is required for a table with {pseudotime.shape[1]} columns"
                )
            pseudotime_key = pseudotime.columns[0]
        if pseudotime_key not in pseudotime.columns:
            raise ValueError(f"Pseudotime column {pseudotime_key!r} not found")
        pseudotime = pseudotime[pseudotime_key]
    elif not isinstance(pseudotime, pd.Series):
        raise ValueError("pseudotime must be a pandas Series or DataFrame indexed by cell")

    if not pseudotime.index.is_unique:
        raise ValueError("Cell identifiers in pseudotime must be unique")

    return pseudotime.astype(float)


def as_window_frame(
    segment_windows: Union[pd.DataFrame, Mapping[Any, Tuple[float, float]]]
) -> pd.DataFrame:
    """
    Normalize segment windows to a DataFrame with 'start' and 'end' columns.

    Accepts a DataFrame indexed by segment or a {segment: (start, end)} mapping.
    """
    if isinstance(segment_windows, pd.DataFrame):
        missing = {'start', 'end'} - set(segment_windows.columns)
        if missing:
            raise ValueError(f"segment_windows is missing columns: {sorted(missing)}")
        windows = segment_windows[['start', 'end']].astype(float)
    else:
        windows = pd.DataFrame.from_dict(
            {seg: list(bounds) for seg, bounds in segment_windows.items()},
            orient='index', columns=['start', 'end'], dtype=float
        )

    if not windows.index.is_unique:
        raise ValueError("Segment identifiers in segment_windows must be unique")
    bad = windows.index[windows['start'] > windows['end']]
    if len(bad) > 0:
        raise ValueError(f"Segment windows with start > end: {list(bad)}")

    return windows


def visitation_from_columns(
    table: pd.DataFrame,
    prefix: str = VISIT_PREFIX
) -> pd.DataFrame:
    """
    Extract per-segment visitation columns named '<prefix><segment>'.

    Parameters
    ----------
    table : DataFrame
        Cell-indexed table with visitation columns among others.
    prefix : str, default="visitfreq.raw."
        Column name prefix.

    Returns
    -------
    visitation : DataFrame
        Visitation columns renamed to their segment ids.
    """
    columns = [c for c in table.columns if isinstance(c, str) and c.startswith(prefix)]
    if not columns:
        raise ValueError(f"No columns with prefix {prefix!r}")
    visitation = table[columns].astype(float)
    visitation.columns = [c[len(prefix):] for c in columns]
    return visitation


def prepare_tree_data(
    pseudotime: Union[pd.Series, pd.DataFrame],
    visitation: pd.DataFrame,
    segment_windows: Union[pd.DataFrame, Mapping[Any, Tuple[float, float]]],
    segment_parents: Optional[Mapping[Any, Any]] = None,
    pseudotime_key: Optional[str] = None
) -> TreeData:
    """
    Prepare tree tables for assignment and layouts.

    Parameters
    ----------
    pseudotime : Series or DataFrame
        Cell-indexed pseudotime (one column per definition for a DataFrame).
    visitation : DataFrame
        Cell x segment raw visitation frequencies. Cells missing from it, and
        segments without a column, have missing (NaN) visitation.
    segment_windows : DataFrame or dict
        Pseudotime window per segment.
    segment_parents : dict, optional
        Segment -> parent segment.
    pseudotime_key : str, optional
        Pseudotime column to use.

    Returns
    -------
    tree : TreeData
    """
    pt = as_pseudotime_series(pseudotime, pseudotime_key)
    windows = as_window_frame(segment_windows)

    if not visitation.index.is_unique:
        raise ValueError("Cell identifiers in visitation must be unique")
    visits = visitation.reindex(index=pt.index, columns=windows.index).astype(float)
    if (visits < 0).any().any():
        raise ValueError("Visitation frequencies must be non-negative")

    parents = dict(segment_parents or {})
    unknown = [s for s in parents if s not in windows.index]
    if unknown:
        raise ValueError(f"segment_parents refers to segments without windows: {unknown[:5]}")

    return TreeData(
        pseudotime=pt,
        visitation=visits,
        segment_windows=windows,
        segment_parents=parents,
        pseudotime_key=pseudotime_key if pseudotime_key is not None else pt.name
    )


def prepare_from_anndata(
    adata,
    segment_windows: Union[pd.DataFrame, Mapping[Any, Tuple[float, float]]],
    segment_parents: Optional[Mapping[Any, Any]] = None,
    pseudotime_key: str = "pseudotime",
    visit_prefix: str = VISIT_PREFIX
) -> TreeData:
    """
    Prepare tree tables from an AnnData object.

    Parameters
    ----------
    adata : AnnData
        Annotated data matrix. Pseudotime and visitation columns are read from adata.obs.
    segment_windows : DataFrame or dict
        Pseudotime window per segment.
    segment_parents : dict, optional
        Segment -> parent segment.
    pseudotime_key : str, default="pseudotime"
        Key in adata.obs for pseudotime.
    visit_prefix : str, default="visitfreq.raw."
        Prefix of visitation columns in adata.obs.

    Returns
    -------
    tree : TreeData

    Notes
    -----
    Segment ids are taken from column names, so windows and parents are
    keyed by the string form of their segment ids.
    """
    obs = adata.obs
    windows = as_window_frame(segment_windows)
    windows.index = windows.index.astype(str)
    parents = {
        str(seg): (str(parent) if parent is not None else None)
        for seg, parent in (segment_parents or {}).items()
    }
    return prepare_tree_data(
        pseudotime=obs[[pseudotime_key]],
        visitation=visitation_from_columns(obs, prefix=visit_prefix),
        segment_windows=windows,
        segment_parents=parents,
        pseudotime_key=pseudotime_key
    )
