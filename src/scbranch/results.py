"""
Result containers for impulse fits and segment assignments.

Provides structured output with save/load functionality.
"""

import numpy as np
import pandas as pd
import json
from dataclasses import dataclass, field, asdict
from typing import Optional, Dict, Any, List, FrozenSet
from pathlib import Path


PARAM_NAMES = ("h0", "h1", "h2", "t1", "t2", "b1", "b2")


@dataclass
class ImpulseFit:
    """
    Best impulse fit for one observation series.

    Attributes
    ----------
    h0, h1, h2 : float
        Initial, peak (intermediate) and final levels.
    t1, t2 : float
        Onset and offset times, t1 <= t2.
    b1, b2 : float
        Rise and fall slopes. Equal when single_slope is True.
    rss : float
        Residual sum of squares.
    shape : str or None
        One of "rise", "fall", "impulse", "flat"; None if the fit failed.
    threshold : float
        Level difference (onset_thresh * sd_bg) used for the shape call.
    single_slope : bool
        Whether the shared-slope model was selected.
    n_converged : int
        Number of starts that converged for the selected model.
    n_starts : int
        Number of starts attempted per model.
    success : bool
        False if every start failed to converge.
    """
    h0: float = np.nan
    h1: float = np.nan
    h2: float = np.nan
    t1: float = np.nan
    t2: float = np.nan
    b1: float = np.nan
    b2: float = np.nan
    rss: float = np.nan
    shape: Optional[str] = None
    threshold: float = np.nan
    single_slope: bool = False
    n_converged: int = 0
    n_starts: int = 0
    success: bool = False

    @property
    def params(self) -> np.ndarray:
        return np.array([getattr(self, name) for name in PARAM_NAMES])

    def _first_transition(self, sign: int) -> float:
        if not self.success or self.shape == "flat":
            return np.nan
        for t, step in ((self.t1, self.h1 - self.h0), (self.t2, self.h2 - self.h1)):
            if sign * step > self.threshold:
                return t
        return np.nan

    @property
    def time_on(self) -> float:
        """Time of the first upward transition larger than the threshold."""
        return self._first_transition(+1)

    @property
    def time_off(self) -> float:
        """Time of the first downward transition larger than the threshold."""
        return self._first_transition(-1)

    def predict(self, x: np.ndarray) -> np.ndarray:
        """Evaluate the fitted curve at x (NaN for unfit results)."""
        from .impulse import impulse_curve

        if not self.success:
            return np.full(np.shape(x), np.nan)
        return impulse_curve(x, *self.params)

    def as_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out['time_on'] = self.time_on
        out['time_off'] = self.time_off
        return out


@dataclass
class ImpulseBatchResult:
    """
    Impulse fits for many genes.

    Attributes
    ----------
    fits : dict
        Gene -> ImpulseFit, for every gene attempted (unfit genes included).
    failed : list
        Genes whose fit did not converge from any start.
    config : dict
        Settings used for fitting.
    """
    fits: Dict[str, ImpulseFit]
    failed: List[str] = field(default_factory=list)
    config: Dict[str, Any] = field(default_factory=dict)

    def to_dataframe(self) -> pd.DataFrame:
        """One row per gene with parameters, rss, shape and onset/offset times."""
        rows = {gene: fit.as_dict() for gene, fit in self.fits.items()}
        frame = pd.DataFrame.from_dict(rows, orient='index')
        frame.index.name = 'gene'
        return frame

    def shapes(self) -> pd.Series:
        """Shape call per successfully fit gene."""
        return pd.Series(
            {gene: fit.shape for gene, fit in self.fits.items() if fit.success},
            dtype=object
        )

    def save(self, path: str):
        """
        Save results to file.

        Parameters
        ----------
        path : str
            Output file path. Uses .npz format.
        """
        path = Path(path)
        genes = list(self.fits)
        fits = [self.fits[g] for g in genes]

        np.savez(
            path,
            genes=np.array(genes, dtype=str),
            params=np.array([f.params for f in fits]).reshape(len(fits), len(PARAM_NAMES)),
            rss=np.array([f.rss for f in fits], dtype=float),
            shape=np.array([f.shape if f.shape is not None else "" for f in fits], dtype=str),
            threshold=np.array([f.threshold for f in fits], dtype=float),
            single_slope=np.array([f.single_slope for f in fits], dtype=bool),
            n_converged=np.array([f.n_converged for f in fits], dtype=int),
            n_starts=np.array([f.n_starts for f in fits], dtype=int),
            success=np.array([f.success for f in fits], dtype=bool),
            failed=np.array(self.failed, dtype=str),
            config=json.dumps(self.config)
        )

    @classmethod
    def load(cls, path: str) -> "ImpulseBatchResult":
        """
        Load results from file.

        Parameters
        ----------
        path : str
            Input file path (.npz format).

        Returns
        -------
        result : ImpulseBatchResult
        """
        data = np.load(path, allow_pickle=False)

        fits = {}
        for i, gene in enumerate(data['genes']):
            values = dict(zip(PARAM_NAMES, (float(v) for v in data['params'][i])))
            shape = str(data['shape'][i])
            fits[str(gene)] = ImpulseFit(
                rss=float(data['rss'][i]),
                shape=shape if shape else None,
                threshold=float(data['threshold'][i]),
                single_slope=bool(data['single_slope'][i]),
                n_converged=int(data['n_converged'][i]),
                n_starts=int(data['n_starts'][i]),
                success=bool(data['success'][i]),
                **values
            )

        return cls(
            fits=fits,
            failed=[str(g) for g in data['failed']],
            config=json.loads(str(data['config']))
        )


@dataclass(frozen=True, eq=False)
class SegmentAssignment:
    """
    Assignment of cells to tree segments.

    Attributes
    ----------
    cell_segment : Series
        Segment of each assigned cell, indexed by cell. Unassigned cells are absent.
    segment_cells : dict
        Segment -> frozenset of assigned cells. Every segment is present.
    unassigned : ndarray
        Cells not covered by any segment window (or without visitation data),
        in input order.
    segments : tuple
        Segment order used for tie-breaking.
    pseudotime_key : str, optional
        Pseudotime column used.
    """
    cell_segment: pd.Series
    segment_cells: Dict[str, FrozenSet[str]]
    unassigned: np.ndarray
    segments: tuple
    pseudotime_key: Optional[str] = None

    def segment_of(self, cell) -> Optional[str]:
        """Segment of a cell, or None if unassigned."""
        return self.cell_segment.get(cell)

    def cells_in(self, segment) -> FrozenSet[str]:
        """Cells assigned to a segment."""
        return self.segment_cells[segment]

    def to_frame(self) -> pd.DataFrame:
        """Cell-indexed table with a 'segment' column (None for unassigned cells)."""
        assigned = pd.DataFrame({'segment': self.cell_segment.astype(object)})
        missing = pd.DataFrame({'segment': [None] * len(self.unassigned)},
                               index=pd.Index(self.unassigned, name=self.cell_segment.index.name))
        return pd.concat([assigned, missing])

    def save(self, path: str):
        """Save the assignment to an .npz file."""
        np.savez(
            Path(path),
            cells=np.array(self.cell_segment.index, dtype=str),
            cell_segments=np.array(self.cell_segment.values, dtype=str),
            unassigned=np.array(self.unassigned, dtype=str),
            segments=np.array(self.segments, dtype=str),
            config=json.dumps({'pseudotime_key': self.pseudotime_key})
        )

    @classmethod
    def load(cls, path: str) -> "SegmentAssignment":
        """
        Load an assignment saved with save().

        Cell and segment identifiers are restored as strings.
        """
        data = np.load(path, allow_pickle=False)
        segments = tuple(str(s) for s in data['segments'])
        cell_segment = pd.Series(
            [str(s) for s in data['cell_segments']],
            index=pd.Index([str(c) for c in data['cells']]),
            dtype=object
        )
        return cls(
            cell_segment=cell_segment,
            segment_cells=invert_assignment(cell_segment, segments),
            unassigned=np.array([str(c) for c in data['unassigned']], dtype=object),
            segments=segments,
            pseudotime_key=json.loads(str(data['config']))['pseudotime_key']
        )


def invert_assignment(cell_segment: pd.Series, segments) -> Dict[str, FrozenSet[str]]:
    """Build the segment -> cells index from a cell -> segment mapping."""
    members = {segment: [] for segment in segments}
    for cell, segment in cell_segment.items():
        members[segment].append(cell)
    return {segment: frozenset(cells) for segment, cells in members.items()}
