"""
Utility functions for scbranch.

Provides normalization, pseudotime binning, and per-node summaries of
expression or metadata on the tree.
"""

import numpy as np
import pandas as pd
from typing import Tuple, Optional, Union


def normalize_to_unit(values: np.ndarray) -> Tuple[np.ndarray, float, float]:
    """
    Min-max scale values to [0, 1].

    Returns the scaled values with the observed min and max, so results on the
    unit axis can be mapped back. Constant input maps to 0.5.
    """
    values = np.asarray(values, dtype=float)
    vmin, vmax = float(np.min(values)), float(np.max(values))
    if vmax == vmin:
        return np.full_like(values, 0.5), vmin, vmax
    return (values - vmin) / (vmax - vmin), vmin, vmax


def bin_by_quantile(values: np.ndarray, n_bins: int) -> np.ndarray:
    """
    Label values by quantile bin.

    Parameters
    ----------
    values : ndarray of shape (n,)
        Finite values to bin.
    n_bins : int
        Number of bins. Falls back to equal-width bins when repeated values
        make quantile edges coincide.

    Returns
    -------
    labels : ndarray of shape (n,)
        Bin label of each value, 0 to n_bins - 1.
    """
    edges = np.quantile(values, np.linspace(0.0, 1.0, n_bins + 1))
    if np.any(np.diff(edges) <= 0):
        edges = np.linspace(np.min(values), np.max(values), n_bins + 1)
    # interior edges only, so the maximum lands in the last bin
    return np.searchsorted(edges[1:-1], values, side='right')


def binned_means(
    x: np.ndarray,
    expression: pd.DataFrame,
    n_bins: int
) -> Tuple[np.ndarray, pd.DataFrame]:
    """
    Average expression inside quantile bins of x.

    Parameters
    ----------
    x : ndarray of shape (n_cells,)
        Pseudotime (or time) of each cell. Cells with missing x are dropped.
    expression : DataFrame of shape (n_cells, n_genes)
        Expression per cell, rows aligned with x.
    n_bins : int
        Number of quantile bins.

    Returns
    -------
    x_binned : ndarray of shape (n_nonempty_bins,)
        Mean x of each non-empty bin.
    expression_binned : DataFrame of shape (n_nonempty_bins, n_genes)
        Mean expression of each non-empty bin.
    """
    x = np.asarray(x, dtype=float)
    if len(x) != len(expression):
        raise ValueError(f"x and expression must have same length: {len(x)} vs {len(expression)}")

    finite = np.isfinite(x)
    if not finite.any():
        raise ValueError("x has no finite values to bin")
    x = x[finite]
    values = expression.to_numpy()[finite]

    labels = bin_by_quantile(x, n_bins=n_bins)
    grouped = pd.DataFrame(values, columns=expression.columns).groupby(labels)
    x_binned = pd.Series(x).groupby(labels).mean().to_numpy()
    return x_binned, grouped.mean().reset_index(drop=True)


def mean_of_logs(x: np.ndarray, base: float = 2) -> float:
    """
    Mean of log-transformed values, taken in linear space.

    Expression is assumed to be stored as log_base(value + 1).
    """
    x = np.asarray(x, dtype=float)
    return float(np.log(np.mean(base ** x - 1) + 1) / np.log(base))


def output_uniform(x, ignore_na: bool = False) -> Optional[str]:
    """
    Return the single value of x (as string) if x is uniform, otherwise None.

    Parameters
    ----------
    x : array-like
        Values to check.
    ignore_na : bool, default=False
        If True, missing values are excluded from the comparison.
        Otherwise a missing value counts as a distinct value.
    """
    values = pd.Series(x, dtype=object)
    missing = values.isna()
    unique = set(values[~missing].astype(str))
    if missing.any() and not ignore_na:
        unique.add(None)

    if len(unique) == 1:
        return unique.pop()
    return None


def summarize_by_node(
    values: Union[pd.Series, np.ndarray],
    nodes: Union[pd.Series, np.ndarray],
    discrete: bool = False,
    ignore_na: bool = False,
    base: float = 2
) -> pd.DataFrame:
    """
    Summarize per-cell values for each tree node.

    Continuous values are summarized by their mean of logs; discrete values by
    their uniform value (None when cells in the node disagree).

    Parameters
    ----------
    values : array-like of shape (n_cells,)
        Per-cell expression or label.
    nodes : array-like of shape (n_cells,)
        Tree node of each cell.
    discrete : bool, default=False
        Whether values are discrete labels.
    ignore_na : bool, default=False
        Passed to output_uniform for discrete values.
    base : float, default=2
        Log base for continuous values.

    Returns
    -------
    summary : DataFrame indexed by node
        Columns 'value' and 'n' (number of cells).
    """
    values = np.asarray(values, dtype=object if discrete else float)
    nodes = np.asarray(nodes)
    if len(values) != len(nodes):
        raise ValueError(f"values and nodes must have same length: {len(values)} vs {len(nodes)}")

    frame = pd.DataFrame({'value': values, 'node': nodes})
    grouped = frame.groupby('node', sort=True)['value']
    if discrete:
        summary = grouped.agg(lambda v: output_uniform(v, ignore_na=ignore_na))
    else:
        summary = grouped.agg(lambda v: mean_of_logs(v, base=base))

    return pd.DataFrame({'value': summary, 'n': grouped.size()})
