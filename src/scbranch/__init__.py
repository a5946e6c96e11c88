"""
scbranch: Single-cell branching trajectory analysis

Fit impulse curves to gene expression along pseudotime, assign cells to the
segments of a reconstructed developmental tree, and build the tables behind
branchpoint and dendrogram diagnostics.
"""

__version__ = "0.1.0"

from .impulse import impulse_fit, fit_impulse_genes, impulse_curve, classify_shape
from .segments import assign_cells_to_segments, assign_tree_cells, cells_along_lineage
from .branchpoint import preference, branchpoint_preference_layout
from .preprocess import TreeData, prepare_tree_data, prepare_from_anndata
from .results import ImpulseFit, ImpulseBatchResult, SegmentAssignment

__all__ = [
    "__version__",
    "impulse_fit",
    "fit_impulse_genes",
    "impulse_curve",
    "classify_shape",
    "assign_cells_to_segments",
    "assign_tree_cells",
    "cells_along_lineage",
    "preference",
    "branchpoint_preference_layout",
    "TreeData",
    "prepare_tree_data",
    "prepare_from_anndata",
    "ImpulseFit",
    "ImpulseBatchResult",
    "SegmentAssignment",
]
