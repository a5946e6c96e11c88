"""
Optimization routines for curve fitting.

Implements multi-start bounded nonlinear least squares.
"""

import numpy as np
from scipy.optimize import least_squares
from typing import Callable, Optional, Tuple, List, Dict, Any
import warnings


def multi_start_least_squares(
    residual_fn: Callable[[np.ndarray], np.ndarray],
    starts: List[np.ndarray],
    bounds: Tuple[np.ndarray, np.ndarray],
    max_nfev: int = 2000,
    verbose: bool = False
) -> Tuple[np.ndarray, float, Dict[str, Any]]:
    """
    Multi-start bounded least squares (trust region reflective).

    Parameters
    ----------
    residual_fn : callable
        Residual function r(theta) -> ndarray. The objective is sum(r**2).
    starts : list of ndarray
        Initial parameter vectors, one optimization per entry.
    bounds : tuple of ndarray
        Lower and upper parameter bounds. Starts are clipped into them.
    max_nfev : int, default=2000
        Maximum residual evaluations per start.
    verbose : bool, default=False
        Print progress.

    Returns
    -------
    x_best : ndarray
        Best parameter vector found.
    rss_best : float
        Residual sum of squares at x_best.
    info : dict
        Optimization info with keys 'n_converged', 'n_starts', 'nfev',
        'message', 'all_results'.

    Raises
    ------
    RuntimeError
        If no start converged.
    """
    lb, ub = (np.asarray(b, dtype=float) for b in bounds)

    best_result = None
    best_rss = np.inf
    n_converged = 0
    all_results = []

    for i, x0 in enumerate(starts):
        x0 = np.clip(np.asarray(x0, dtype=float), lb, ub)

        try:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore")
                result = least_squares(
                    residual_fn,
                    x0,
                    bounds=(lb, ub),
                    method='trf',
                    x_scale='jac',
                    max_nfev=max_nfev
                )
        except (ValueError, FloatingPointError, np.linalg.LinAlgError) as e:
            if verbose:
                print(f"  Start {i+1}/{len(starts)}: failed with {e}")
            all_results.append({
                'x': x0,
                'rss': np.inf,
                'success': False,
                'error': str(e)
            })
            continue

        rss = float(np.sum(result.fun ** 2))
        converged = bool(result.success) and np.isfinite(rss)
        all_results.append({
            'x': result.x,
            'rss': rss,
            'success': converged,
            'nfev': result.nfev
        })

        if verbose:
            print(f"  Start {i+1}/{len(starts)}: rss = {rss:.4g}, success = {converged}")

        if not converged:
            continue

        n_converged += 1
        if rss < best_rss:
            best_rss = rss
            best_result = result

    if best_result is None:
        raise RuntimeError("All optimization starts failed")

    info = {
        'n_converged': n_converged,
        'n_starts': len(starts),
        'nfev': best_result.nfev,
        'message': best_result.message,
        'all_results': all_results
    }

    return best_result.x, best_rss, info
