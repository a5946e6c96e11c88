"""
Synthetic data generation for testing and demonstration.

Provides impulse-shaped expression series with known parameters and small
branching trees with known cell-to-segment membership.
"""

import numpy as np
import pandas as pd
from typing import Tuple, Optional, Dict

from .impulse import impulse_curve


# (h0, h1, h2, t1, t2, b1, b2) on a [0, 1] time axis
SHAPE_PARAMS = {
    "rise": (1.0, 5.0, 5.0, 0.4, 0.9, 20.0, 20.0),
    "fall": (5.0, 5.0, 1.0, 0.1, 0.5, 20.0, 20.0),
    "impulse": (1.0, 6.0, 1.0, 0.3, 0.6, 25.0, 25.0),
    "flat": (3.0, 3.0, 3.0, 0.3, 0.6, 10.0, 10.0),
}


def generate_impulse_series(
    shape: str = "impulse",
    n_points: int = 25,
    x_span: Tuple[float, float] = (0.0, 1.0),
    noise_sd: float = 0.1,
    params: Optional[Tuple[float, ...]] = None,
    random_state: Optional[int] = 0
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Generate one noisy impulse-shaped series.

    Parameters
    ----------
    shape : str, default="impulse"
        One of "rise", "fall", "impulse", "flat". Ignored if params is given.
    n_points : int, default=25
        Number of evenly spaced observations.
    x_span : tuple, default=(0.0, 1.0)
        Range of x.
    noise_sd : float, default=0.1
        Standard deviation of Gaussian noise.
    params : tuple, optional
        (h0, h1, h2, t1, t2, b1, b2) on the [0, 1] axis.
    random_state : int, optional
        Random seed.

    Returns
    -------
    x, y : ndarray of shape (n_points,)
    """
    rng = np.random.default_rng(random_state)
    if params is None:
        params = SHAPE_PARAMS[shape]

    u = np.linspace(0.0, 1.0, n_points)
    y = impulse_curve(u, *params) + rng.normal(0, noise_sd, n_points)
    x = x_span[0] + u * (x_span[1] - x_span[0])
    return x, y


def generate_expression_dataset(
    gene_shapes: Dict[str, str],
    n_cells: int = 300,
    noise_sd: float = 0.2,
    random_state: int = 0
) -> dict:
    """
    Generate per-cell expression of several genes along pseudotime.

    Parameters
    ----------
    gene_shapes : dict
        Gene -> shape name (see SHAPE_PARAMS).
    n_cells : int, default=300
        Number of cells.
    noise_sd : float, default=0.2
        Standard deviation of Gaussian noise per cell.
    random_state : int, default=0
        Random seed.

    Returns
    -------
    dataset : dict with keys:
        - 'pseudotime': Series of shape (n_cells,) in [0, 1]
        - 'expression': DataFrame of shape (n_cells, n_genes)
        - 'shapes': Series gene -> true shape
    """
    rng = np.random.default_rng(random_state)
    cells = [f"cell{i}" for i in range(n_cells)]
    pt = np.sort(rng.uniform(0, 1, n_cells))

    expression = {}
    for gene, shape in gene_shapes.items():
        expression[gene] = impulse_curve(pt, *SHAPE_PARAMS[shape]) + rng.normal(0, noise_sd, n_cells)

    return {
        'pseudotime': pd.Series(pt, index=cells, name='pseudotime'),
        'expression': pd.DataFrame(expression, index=cells),
        'shapes': pd.Series(gene_shapes, dtype=object)
    }


def generate_synthetic_tree(
    n_cells_per_segment: int = 50,
    high_visits: float = 200.0,
    related_visits: float = 50.0,
    background_visits: float = 2.0,
    random_state: int = 0
) -> dict:
    """
    Generate a three-segment tree: root "1" splitting into "2" and "3".

    Each cell receives Poisson visitation with a high rate from its own
    segment, an intermediate rate from segments on the same lineage, and a
    background rate from the others.

    Returns
    -------
    dataset : dict with keys:
        - 'pseudotime': DataFrame with a 'pseudotime' column, indexed by cell
        - 'visitation': DataFrame cells x segments
        - 'segment_windows': DataFrame with 'start', 'end', indexed by segment
        - 'segment_parents': dict segment -> parent
        - 'true_segment': Series cell -> segment
    """
    rng = np.random.default_rng(random_state)
    segment_windows = pd.DataFrame(
        {'start': [0.0, 0.4, 0.4], 'end': [0.4, 1.0, 1.0]},
        index=pd.Index(["1", "2", "3"], name='segment')
    )
    segment_parents = {"2": "1", "3": "1"}
    related = {("1", "2"), ("2", "1"), ("1", "3"), ("3", "1")}

    cells, pt, truth, visits = [], [], [], []
    for segment, (start, end) in segment_windows.iterrows():
        for i in range(n_cells_per_segment):
            cells.append(f"s{segment}_c{i}")
            pt.append(rng.uniform(start, end))
            truth.append(segment)
            rates = [
                high_visits if other == segment
                else related_visits if (segment, other) in related
                else background_visits
                for other in segment_windows.index
            ]
            visits.append(rng.poisson(rates))

    return {
        'pseudotime': pd.DataFrame({'pseudotime': pt}, index=cells),
        'visitation': pd.DataFrame(
            np.array(visits, dtype=float), index=cells, columns=segment_windows.index
        ),
        'segment_windows': segment_windows,
        'segment_parents': segment_parents,
        'true_segment': pd.Series(truth, index=cells, name='segment')
    }
