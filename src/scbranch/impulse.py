"""
Impulse model fitting.

Fits a two-transition logistic ("impulse") curve to expression along pseudotime
or real time: the curve starts at a level h0, moves to h1 around t1 and settles
at h2 around t2. Fits are found by multi-start bounded least squares, and each
fit is classified as a rise, fall, transient impulse or flat profile.
"""

import numpy as np
import pandas as pd
import warnings
from typing import Optional, Union, List, Dict, Any, Tuple

from .optimize import multi_start_least_squares
from .results import ImpulseFit, ImpulseBatchResult
from .utils import normalize_to_unit, binned_means


MIN_POINTS = 4
SHAPES = ("rise", "fall", "impulse", "flat")

# Slope bounds on the unit-normalized x axis
DEFAULT_SLOPE_BOUNDS = (0.5, 200.0)

# Each fitted level spans at least this many average sample spacings
LEVEL_SUPPORT = 5
MAX_SUPPORT_WIDTH = 0.25

_SLOPE_MODES = {
    "auto": "auto", None: "auto",
    "on": "on", True: "on",
    "off": "off", False: "off",
}


def impulse_curve(
    x: np.ndarray,
    h0: float,
    h1: float,
    h2: float,
    t1: float,
    t2: float,
    b1: float,
    b2: float
) -> np.ndarray:
    """
    Evaluate the impulse model.

    y(x) = h0 + (h1 - h0) * sigmoid(b1 (x - t1)) + (h2 - h1) * sigmoid(b2 (x - t2))
    """
    x = np.asarray(x, dtype=float)
    # sigmoid(z) = (1 + tanh(z/2)) / 2, stable for large |z|
    rise = 0.5 * (1 + np.tanh(0.5 * b1 * (x - t1)))
    fall = 0.5 * (1 + np.tanh(0.5 * b2 * (x - t2)))
    return h0 + (h1 - h0) * rise + (h2 - h1) * fall


def classify_shape(h0: float, h1: float, h2: float, threshold: float) -> str:
    """
    Classify a fitted profile from its three levels.

    Parameters
    ----------
    h0, h1, h2 : float
        Initial, intermediate and final levels.
    threshold : float
        Minimum level difference considered meaningful.

    Returns
    -------
    shape : str
        "impulse" if the curve moves away from h0 and comes back, "rise" or
        "fall" for a net change from h0 to h2, "flat" otherwise.
    """
    up = h1 - h0
    down = h1 - h2

    if abs(up) > threshold and abs(down) > threshold and np.sign(up) == np.sign(down):
        return "impulse"
    if h2 - h0 > threshold:
        return "rise"
    if h0 - h2 > threshold:
        return "fall"
    if abs(up) > threshold or abs(down) > threshold:
        return "impulse"
    return "flat"


def _resolve_slope_mode(limit_single_slope) -> str:
    try:
        return _SLOPE_MODES[limit_single_slope]
    except (KeyError, TypeError):
        raise ValueError(
            f"limit_single_slope must be 'auto', 'on' or 'off', got {limit_single_slope!r}"
        ) from None


def _validate_series(x, y, sd_bg: float) -> Tuple[np.ndarray, np.ndarray]:
    """Check inputs and drop non-finite pairs."""
    x = np.asarray(x, dtype=float).ravel()
    y = np.asarray(y, dtype=float).ravel()

    if len(x) != len(y):
        raise ValueError(f"x and y must have same length: {len(x)} vs {len(y)}")

    mask = np.isfinite(x) & np.isfinite(y)
    x, y = x[mask], y[mask]

    if len(x) < MIN_POINTS:
        raise ValueError(f"At least {MIN_POINTS} finite points are required, got {len(x)}")
    if np.ptp(x) <= 0:
        raise ValueError("x must contain at least two distinct values")
    if not np.isfinite(sd_bg) or sd_bg <= 0:
        raise ValueError(f"sd_bg must be positive, got {sd_bg}")

    order = np.argsort(x, kind='stable')
    return x[order], y[order]


def _support_width(u: np.ndarray) -> float:
    """
    Minimum unit-axis width of each fitted level.

    About LEVEL_SUPPORT average sample spacings, capped so that the early,
    intermediate and late levels always fit side by side.
    """
    n_distinct = len(np.unique(u))
    return min(LEVEL_SUPPORT / (n_distinct - 1), MAX_SUPPORT_WIDTH)


def _transition_times(p: float, f: float, width: float) -> Tuple[float, float]:
    """
    Map p, f in [0, 1] to transition times with width <= t1, t1 + width <= t2 <= 1 - width.
    """
    t1 = width + p * (1.0 - 3.0 * width)
    t2 = t1 + width + f * (1.0 - 2.0 * width - t1)
    return t1, t2


def _coarse_estimates(u: np.ndarray, y: np.ndarray) -> Dict[str, float]:
    """
    Initial guesses on the unit x axis (u sorted ascending).

    Early and late levels are means of the first and last fifth of the
    series; the peak is the point furthest from their midpoint.
    """
    n_edge = max(1, len(y) // 5)
    h0 = float(np.mean(y[:n_edge]))
    h2 = float(np.mean(y[-n_edge:]))

    i_peak = int(np.argmax(np.abs(y - 0.5 * (h0 + h2))))
    h1 = float(y[i_peak])
    u_peak = float(u[i_peak])

    t1 = 0.5 * u_peak
    t2 = 0.5 * (u_peak + 1.0)
    return {'h0': h0, 'h1': h1, 'h2': h2, 't1': t1, 't2': t2}


def _make_starts(
    estimates: Dict[str, float],
    y_range: float,
    a: float,
    k: int,
    single_slope: bool,
    slope_bounds: Tuple[float, float],
    width: float,
    rng: np.random.Generator
) -> List[np.ndarray]:
    """
    Build k start vectors [h0, h1, h2, p, f, b1(, b2)] (see _transition_times).
    """
    n_slopes = 1 if single_slope else 2
    log_lo, log_hi = np.log(slope_bounds)
    levels = np.array([estimates['h0'], estimates['h1'], estimates['h2']])

    # invert _transition_times for the coarse guess
    p = np.clip((estimates['t1'] - width) / (1.0 - 3.0 * width), 0.0, 1.0)
    t1, _ = _transition_times(p, 0.0, width)
    room = 1.0 - 2.0 * width - t1
    f = np.clip((estimates['t2'] - t1 - width) / room, 0.0, 1.0) if room > 0 else 0.0
    b0 = np.sqrt(slope_bounds[0] * slope_bounds[1])

    starts = [np.concatenate([levels, [p, f], [b0] * n_slopes])]
    for _ in range(k - 1):
        h = levels + rng.uniform(-a, a, size=3) * y_range
        p, f = rng.uniform(0.0, 1.0, size=2)
        b = np.exp(rng.uniform(log_lo, log_hi, size=n_slopes))
        starts.append(np.concatenate([h, [p, f], b]))

    return starts


def _unpack(theta: np.ndarray, single_slope: bool, width: float) -> Tuple[float, ...]:
    """Map an optimizer vector to (h0, h1, h2, t1, t2, b1, b2) on the unit axis."""
    h0, h1, h2, p, f = theta[:5]
    t1, t2 = _transition_times(p, f, width)
    b1 = theta[5]
    b2 = theta[5] if single_slope else theta[6]
    return h0, h1, h2, t1, t2, b1, b2


def _reached_levels(u: np.ndarray, params: np.ndarray) -> Tuple[float, float, float]:
    """
    Early, intermediate and late levels the fitted curve reaches at the observed u.

    The intermediate level is the curve value furthest from the midpoint of the
    early and late levels (an end point for monotone curves).
    """
    curve = impulse_curve(u, *params)
    e0, e2 = float(curve[0]), float(curve[-1])
    e1 = float(curve[np.argmax(np.abs(curve - 0.5 * (e0 + e2)))])
    return e0, e1, e2


def _fit_model(
    u: np.ndarray,
    y: np.ndarray,
    sd_bg: float,
    a: float,
    k: int,
    single_slope: bool,
    slope_bounds: Tuple[float, float],
    rng: np.random.Generator,
    max_nfev: int,
    verbose: bool
) -> Tuple[Optional[np.ndarray], float, int]:
    """
    Fit one model variant (shared or independent slopes).

    Returns
    -------
    theta : ndarray or None
        Best unit-axis parameters (h0, h1, h2, t1, t2, b1, b2), None if no start converged.
    rss : float
        Residual sum of squares of the best start.
    n_converged : int
        Number of converged starts.
    """
    y_min, y_max = float(np.min(y)), float(np.max(y))
    y_range = y_max - y_min
    pad = 0.5 * y_range + sd_bg
    width = _support_width(u)

    n_slopes = 1 if single_slope else 2
    lower = np.array([y_min - pad] * 3 + [0.0, 0.0] + [slope_bounds[0]] * n_slopes)
    upper = np.array([y_max + pad] * 3 + [1.0, 1.0] + [slope_bounds[1]] * n_slopes)

    starts = _make_starts(
        _coarse_estimates(u, y), y_range, a, k, single_slope, slope_bounds, width, rng
    )

    def residuals(theta):
        return impulse_curve(u, *_unpack(theta, single_slope, width)) - y

    try:
        theta, rss, info = multi_start_least_squares(
            residuals, starts, bounds=(lower, upper),
            max_nfev=max_nfev, verbose=verbose
        )
    except RuntimeError:
        return None, np.inf, 0

    return np.array(_unpack(theta, single_slope, width)), rss, info['n_converged']


def impulse_fit(
    x: np.ndarray,
    y: np.ndarray,
    limit_single_slope: Union[str, bool, None] = "auto",
    sd_bg: float = 1.0,
    a: float = 0.1,
    k: int = 50,
    onset_thresh: float = 0.1,
    slope_penalty: float = 0.25,
    slope_bounds: Tuple[float, float] = DEFAULT_SLOPE_BOUNDS,
    random_state: Union[int, np.random.Generator, None] = 0,
    max_nfev: int = 2000,
    verbose: bool = False
) -> ImpulseFit:
    """
    Fit an impulse curve to one observation series.

    Parameters
    ----------
    x : ndarray of shape (n,)
        Pseudotime or time of each observation.
    y : ndarray of shape (n,)
        Expression of each observation.
    limit_single_slope : {"auto", "on", "off"}, default="auto"
        "on" forces b1 == b2, "off" fits them independently, "auto" fits both
        models and keeps the two-slope model only if it lowers the residual sum
        of squares by more than slope_penalty (relative).
        None, True and False are accepted for "auto", "on" and "off".
    sd_bg : float, default=1.0
        Standard deviation of background expression.
    a : float, default=0.1
        Level perturbation of random starts, as a fraction of the y range.
    k : int, default=50
        Number of starts per model.
    onset_thresh : float, default=0.1
        Levels must differ by more than onset_thresh * sd_bg to count as a
        transition when classifying the shape.
    slope_penalty : float, default=0.25
        Relative rss improvement required to prefer independent slopes in
        "auto" mode.
    slope_bounds : tuple, default=(0.5, 200)
        Slope bounds on the x axis rescaled to [0, 1].
    random_state : int or Generator, default=0
        Seed (or generator) for random starts. None is non-deterministic.
    max_nfev : int, default=2000
        Maximum residual evaluations per start.
    verbose : bool, default=False
        Print progress.

    Returns
    -------
    fit : ImpulseFit
        Best fit, with success=False if no start converged.

    Notes
    -----
    x is rescaled to [0, 1] before fitting and the times and slopes are mapped
    back afterwards, so translating x shifts t1 and t2 and leaves levels, rss
    and shape unchanged.

    Each level must be held by the data: t1 and t2 stay about LEVEL_SUPPORT
    sample spacings from the ends of the series and from each other. The shape
    is called from the levels the fitted curve reaches at the observed x.
    """
    mode = _resolve_slope_mode(limit_single_slope)
    if k < 1:
        raise ValueError(f"k must be at least 1, got {k}")
    if a < 0:
        raise ValueError(f"a must be non-negative, got {a}")
    if onset_thresh < 0:
        raise ValueError(f"onset_thresh must be non-negative, got {onset_thresh}")
    if not 0 <= slope_penalty < 1:
        raise ValueError(f"slope_penalty must be in [0, 1), got {slope_penalty}")

    x, y = _validate_series(x, y, sd_bg)
    u, x_min, x_max = normalize_to_unit(x)
    span = x_max - x_min
    rng = np.random.default_rng(random_state)
    threshold = onset_thresh * sd_bg

    candidates = {}
    if mode in ("on", "auto"):
        if verbose:
            print(f"Fitting single-slope model with {k} starts...")
        candidates[True] = _fit_model(u, y, sd_bg, a, k, True, slope_bounds, rng, max_nfev, verbose)
    if mode in ("off", "auto"):
        if verbose:
            print(f"Fitting two-slope model with {k} starts...")
        candidates[False] = _fit_model(u, y, sd_bg, a, k, False, slope_bounds, rng, max_nfev, verbose)

    if mode == "auto":
        rss_single = candidates[True][1]
        rss_two = candidates[False][1]
        single_slope = not (rss_two < (1.0 - slope_penalty) * rss_single)
        if candidates[single_slope][0] is None:
            single_slope = not single_slope
    else:
        single_slope = mode == "on"

    theta, rss, n_converged = candidates[single_slope]
    if theta is None:
        if verbose:
            print("No start converged")
        return ImpulseFit(threshold=threshold, single_slope=single_slope, n_starts=k)

    h0, h1, h2, t1, t2, b1, b2 = theta
    reached = _reached_levels(u, theta)
    fit = ImpulseFit(
        h0=float(h0),
        h1=float(h1),
        h2=float(h2),
        t1=float(x_min + t1 * span),
        t2=float(x_min + t2 * span),
        b1=float(b1 / span),
        b2=float(b2 / span),
        rss=float(rss),
        shape=classify_shape(*reached, threshold),
        threshold=threshold,
        single_slope=single_slope,
        n_converged=n_converged,
        n_starts=k,
        success=True
    )

    if verbose:
        print(f"Selected {'single' if single_slope else 'two'}-slope model: "
              f"shape = {fit.shape}, rss = {fit.rss:.4g}")

    return fit


def fit_impulse_genes(
    expression: pd.DataFrame,
    x: Union[np.ndarray, pd.Series],
    sd_bg: Union[float, pd.Series],
    genes: Optional[List[str]] = None,
    n_bins: Optional[int] = None,
    limit_single_slope: Union[str, bool, None] = "auto",
    a: float = 0.1,
    k: int = 50,
    onset_thresh: float = 0.1,
    slope_penalty: float = 0.25,
    random_state: int = 0,
    max_nfev: int = 2000,
    verbose: bool = False
) -> ImpulseBatchResult:
    """
    Fit impulse curves to many genes.

    Parameters
    ----------
    expression : DataFrame of shape (n_obs, n_genes)
        Expression per observation (cell or time bin), one column per gene.
    x : array-like of shape (n_obs,)
        Pseudotime or time per observation. A Series is aligned to expression's index;
        observations with missing x are ignored.
    sd_bg : float or Series
        Background standard deviation, shared or per gene.
    genes : list, optional
        Genes to fit. Default: all columns.
    n_bins : int, optional
        If given, expression is first averaged inside n_bins quantile bins of x.
    limit_single_slope, a, k, onset_thresh, slope_penalty, max_nfev
        See impulse_fit.
    random_state : int, default=0
        Base seed. Each gene gets its own stream, keyed by its column position.
    verbose : bool, default=False
        Print progress.

    Returns
    -------
    result : ImpulseBatchResult
        Fits for every gene and the list of genes that could not be fit.
    """
    if genes is None:
        genes = list(expression.columns)
    missing = [g for g in genes if g not in expression.columns]
    if missing:
        raise ValueError(f"Genes not in expression: {missing[:5]}")

    if isinstance(x, pd.Series):
        x = x.reindex(expression.index)
    x = np.asarray(x, dtype=float)
    if len(x) != len(expression):
        raise ValueError(f"x and expression must have same length: {len(x)} vs {len(expression)}")

    data = expression[genes]
    if n_bins is not None:
        x, data = binned_means(x, data, n_bins)

    if isinstance(sd_bg, pd.Series):
        missing = [g for g in genes if g not in sd_bg.index]
        if missing:
            raise ValueError(f"Genes not in sd_bg: {missing[:5]}")
        sd_per_gene = {g: float(sd_bg[g]) for g in genes}
    else:
        sd_per_gene = {g: float(sd_bg) for g in genes}

    seeds = np.random.SeedSequence(random_state).spawn(len(expression.columns))
    position = {g: i for i, g in enumerate(expression.columns)}

    fits: Dict[str, ImpulseFit] = {}
    failed = []
    for i, gene in enumerate(genes):
        fit = impulse_fit(
            x, data[gene].to_numpy(dtype=float),
            limit_single_slope=limit_single_slope,
            sd_bg=sd_per_gene[gene],
            a=a,
            k=k,
            onset_thresh=onset_thresh,
            slope_penalty=slope_penalty,
            random_state=np.random.default_rng(seeds[position[gene]]),
            max_nfev=max_nfev
        )
        fits[gene] = fit
        if not fit.success:
            failed.append(gene)

        if verbose:
            status = fit.shape if fit.success else "failed"
            print(f"  Gene {i+1}/{len(genes)} {gene}: {status}")

    if failed:
        warnings.warn(f"{len(failed)} of {len(genes)} genes could not be fit")

    config = {
        'limit_single_slope': _resolve_slope_mode(limit_single_slope),
        'a': a,
        'k': k,
        'onset_thresh': onset_thresh,
        'slope_penalty': slope_penalty,
        'n_bins': n_bins,
        'random_state': random_state,
        'max_nfev': max_nfev
    }

    return ImpulseBatchResult(fits=fits, failed=failed, config=config)
