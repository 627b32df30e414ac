from typing import Sequence

import numpy as np
import pandas as pd
from sklearn.ensemble import RandomForestRegressor
from sklearn_quantile import RandomForestQuantileRegressor


def quantile_label(q: float) -> str:
    return f"q{int(round(float(q) * 100)):02d}"


def _check_quantiles(quantiles: Sequence[float]) -> list:
    qs = [float(q) for q in quantiles]
    if not qs:
        raise ValueError("At least one quantile level is required.")
    if any(not 0.0 < q < 1.0 for q in qs):
        raise ValueError(f"Quantile levels must lie in (0, 1); got {qs}")
    if sorted(set(qs)) != qs:
        raise ValueError(f"Quantile levels must be strictly increasing; got {qs}")
    return qs


def build_random_forest(
    seed: int,
    n_estimators: int = 500,
    min_samples_leaf: int = 5,
    max_features=1.0 / 3.0,
    n_jobs: int = -1,
) -> RandomForestRegressor:
    return RandomForestRegressor(
        n_estimators=n_estimators,
        min_samples_leaf=min_samples_leaf,
        max_features=max_features,
        random_state=seed,
        n_jobs=n_jobs,
    )


def build_quantile_forest(
    quantiles: Sequence[float],
    seed: int,
    n_estimators: int = 500,
    min_samples_leaf: int = 5,
    max_features=1.0 / 3.0,
    n_jobs: int = -1,
) -> RandomForestQuantileRegressor:
    return RandomForestQuantileRegressor(
        q=_check_quantiles(quantiles),
        n_estimators=n_estimators,
        min_samples_leaf=min_samples_leaf,
        max_features=max_features,
        random_state=seed,
        n_jobs=n_jobs,
    )


def _quantile_matrix(model, X, n_quantiles: int) -> np.ndarray:
    """Predicted quantiles as an (n_samples, n_quantiles) array, sorted per row."""

    pred = np.asarray(model.predict(X), dtype=float)
    if pred.ndim == 1:
        pred = pred.reshape(1, -1) if n_quantiles == 1 else pred.reshape(-1, 1)
    if pred.shape[0] == n_quantiles and pred.shape[1] == len(X):
        pred = pred.T
    if pred.shape != (len(X), n_quantiles):
        raise ValueError(f"Unexpected quantile prediction shape {pred.shape} for {len(X)} rows.")
    return np.sort(pred, axis=1)


def predict_quantiles(model, X, quantiles: Sequence[float]) -> pd.DataFrame:
    qs = _check_quantiles(quantiles)
    pred = _quantile_matrix(model, X, len(qs))
    index = X.index if isinstance(X, pd.DataFrame) else None
    return pd.DataFrame(pred, columns=[quantile_label(q) for q in qs], index=index)


class QuantileLevel:
    """Expose one quantile level of a fitted quantile forest as ``predict``."""

    def __init__(self, model, quantiles: Sequence[float], level: float):
        self.model = model
        self.quantiles = _check_quantiles(quantiles)
        if float(level) not in self.quantiles:
            raise ValueError(f"Level {level} is not among the fitted quantiles {self.quantiles}")
        self.index = self.quantiles.index(float(level))

    def predict(self, X) -> np.ndarray:
        return _quantile_matrix(self.model, X, len(self.quantiles))[:, self.index]


class IntervalWidth:
    """Width of the predictive interval, q_upper - q_lower, as ``predict``."""

    def __init__(self, model, quantiles: Sequence[float], lower: float, upper: float):
        self.model = model
        self.quantiles = _check_quantiles(quantiles)
        missing = [q for q in (float(lower), float(upper)) if q not in self.quantiles]
        if missing:
            raise ValueError(f"Interval bounds {missing} are not among the fitted quantiles {self.quantiles}")
        if not float(lower) < float(upper):
            raise ValueError("lower must be smaller than upper.")
        self.lower_index = self.quantiles.index(float(lower))
        self.upper_index = self.quantiles.index(float(upper))

    def predict(self, X) -> np.ndarray:
        pred = _quantile_matrix(self.model, X, len(self.quantiles))
        return pred[:, self.upper_index] - pred[:, self.lower_index]
