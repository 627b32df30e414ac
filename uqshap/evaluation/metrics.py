from typing import Dict, Sequence

import numpy as np
import pandas as pd
from sklearn.metrics import mean_absolute_error, mean_pinball_loss, mean_squared_error, r2_score


def regression_metrics(y_true, y_pred) -> Dict[str, float]:
    y = np.asarray(y_true, dtype=float)
    p = np.asarray(y_pred, dtype=float)
    return {
        "rmse": float(np.sqrt(mean_squared_error(y, p))),
        "mae": float(mean_absolute_error(y, p)),
        "r2": float(r2_score(y, p)) if y.size >= 2 else np.nan,
    }


def interval_metrics(y_true, lower, upper, alpha: float) -> Dict[str, float]:
    """Coverage, mean width and interval (Winkler) score of a central interval.

    ``alpha`` is the nominal miss rate, e.g. 0.1 for a 5%-95% interval.
    """

    y = np.asarray(y_true, dtype=float)
    lo = np.asarray(lower, dtype=float)
    hi = np.asarray(upper, dtype=float)
    if not (y.shape == lo.shape == hi.shape):
        raise ValueError("y_true, lower and upper must have the same shape.")
    if y.size == 0:
        return {"coverage": np.nan, "mean_width": np.nan, "interval_score": np.nan}

    width = hi - lo
    below = np.clip(lo - y, 0.0, None)
    above = np.clip(y - hi, 0.0, None)
    score = width + (2.0 / alpha) * below + (2.0 / alpha) * above
    return {
        "coverage": float(np.mean((y >= lo) & (y <= hi))),
        "mean_width": float(np.mean(width)),
        "interval_score": float(np.mean(score)),
    }


def pinball_losses(y_true, quantile_frame: pd.DataFrame, quantiles: Sequence[float]) -> Dict[str, float]:
    if quantile_frame.shape[1] != len(quantiles):
        raise ValueError("quantile_frame must have one column per quantile level.")
    y = np.asarray(y_true, dtype=float)
    return {
        f"pinball_{col}": float(mean_pinball_loss(y, quantile_frame[col].to_numpy(dtype=float), alpha=float(q)))
        for col, q in zip(quantile_frame.columns, quantiles)
    }
