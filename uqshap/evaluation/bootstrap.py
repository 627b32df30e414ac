from __future__ import annotations

from typing import Dict, Iterable, Optional, Tuple

import numpy as np
import pandas as pd

from uqshap.evaluation.metrics import interval_metrics, regression_metrics

METRIC_COLUMNS = ("rmse", "mae", "r2", "coverage", "mean_width", "interval_score")


def _safe_metric_values(
    y: np.ndarray,
    p: np.ndarray,
    lo: Optional[np.ndarray],
    hi: Optional[np.ndarray],
    alpha: float,
) -> Dict[str, float]:
    out = {m: np.nan for m in METRIC_COLUMNS}
    if y.size == 0:
        return out
    out.update(regression_metrics(y, p))
    if np.unique(y).size < 2:
        out["r2"] = np.nan
    if lo is not None and hi is not None:
        out.update(interval_metrics(y, lo, hi, alpha))
    return out


def bootstrap_metric_draws(
    *,
    y_true: np.ndarray,
    y_pred: np.ndarray,
    n_boot: int,
    seed: int,
    lower: Optional[np.ndarray] = None,
    upper: Optional[np.ndarray] = None,
    alpha: float = 0.1,
) -> pd.DataFrame:
    """Metric values on n_boot resamples (with replacement) of the test points."""

    if n_boot <= 0:
        return pd.DataFrame(columns=["iter", *METRIC_COLUMNS])
    y = np.asarray(y_true, dtype=float)
    p = np.asarray(y_pred, dtype=float)
    lo = None if lower is None else np.asarray(lower, dtype=float)
    hi = None if upper is None else np.asarray(upper, dtype=float)
    rng = np.random.default_rng(seed)
    rows = []
    for i in range(n_boot):
        idx = rng.integers(0, y.size, size=y.size, endpoint=False)
        m = _safe_metric_values(
            y[idx],
            p[idx],
            None if lo is None else lo[idx],
            None if hi is None else hi[idx],
            alpha,
        )
        rows.append({"iter": i, **m})
    return pd.DataFrame(rows)


def summarize_bootstrap_ci(
    draws: pd.DataFrame,
    *,
    alpha: float = 0.05,
    metrics: Iterable[str] = METRIC_COLUMNS,
) -> Dict[str, Tuple[float, float]]:
    if draws.empty:
        return {m: (np.nan, np.nan) for m in metrics}
    lo = float(100.0 * (alpha / 2.0))
    hi = float(100.0 * (1.0 - alpha / 2.0))
    out: Dict[str, Tuple[float, float]] = {}
    for m in metrics:
        vals = draws[m].dropna().to_numpy(dtype=float) if m in draws.columns else np.array([])
        if vals.size == 0:
            out[m] = (np.nan, np.nan)
        else:
            out[m] = (float(np.percentile(vals, lo)), float(np.percentile(vals, hi)))
    return out
