"""Hilbert-Schmidt Independence Criterion for predictor screening and grouping.

Gram matrices use a Gaussian (RBF) kernel. The statistic is the biased
V-statistic ``tr(HKHL) / n^2`` and the normalized index

    R2-HSIC(X, Y) = HSIC(X, Y) / sqrt(HSIC(X, X) * HSIC(Y, Y))

lies in [0, 1]. Independence is tested either with the asymptotic gamma
approximation of Gretton et al. (2008) or by permuting the response.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd
from scipy.spatial.distance import cdist
from scipy.stats import gamma


@dataclass(frozen=True)
class HsicTest:
    statistic: float
    p_value: float
    method: str


def _as_2d(x) -> np.ndarray:
    arr = np.asarray(x, dtype=float)
    if arr.ndim == 1:
        arr = arr.reshape(-1, 1)
    if arr.ndim != 2:
        raise ValueError(f"Expected a 1-D or 2-D sample; got shape {arr.shape}")
    if not np.isfinite(arr).all():
        raise ValueError("HSIC inputs must be finite.")
    return arr


def default_bandwidth(x) -> float:
    """Standard deviation for 1-D samples, median pairwise distance otherwise."""

    arr = _as_2d(x)
    if arr.shape[1] == 1:
        bw = float(np.std(arr[:, 0], ddof=1)) if arr.shape[0] > 1 else 0.0
    else:
        d = cdist(arr, arr, "euclidean")
        upper = d[np.triu_indices_from(d, k=1)]
        upper = upper[upper > 0]
        bw = float(np.median(upper)) if upper.size else 0.0
    return bw if bw > 0 and np.isfinite(bw) else 1.0


def gaussian_gram(x, bandwidth: Optional[float] = None) -> np.ndarray:
    arr = _as_2d(x)
    bw = default_bandwidth(arr) if bandwidth is None else float(bandwidth)
    if bw <= 0:
        raise ValueError("bandwidth must be positive.")
    sq = cdist(arr, arr, "sqeuclidean")
    return np.exp(-sq / (2.0 * bw * bw))


def _center(K: np.ndarray) -> np.ndarray:
    return K - K.mean(axis=0, keepdims=True) - K.mean(axis=1, keepdims=True) + K.mean()


def _check_grams(K: np.ndarray, L: np.ndarray) -> int:
    if K.ndim != 2 or K.shape[0] != K.shape[1] or K.shape != L.shape:
        raise ValueError(f"Gram matrices must be square and of equal shape; got {K.shape} and {L.shape}")
    return K.shape[0]


def hsic_statistic(K: np.ndarray, L: np.ndarray) -> float:
    n = _check_grams(K, L)
    return float(np.sum(_center(K) * L) / (n * n))


def _normalized(hxy: float, hxx: float, hyy: float) -> float:
    denom = np.sqrt(hxx * hyy)
    if denom <= 0 or not np.isfinite(denom):
        return 0.0
    return float(np.clip(hxy / denom, 0.0, 1.0))


def r2_hsic(x, y) -> float:
    K = gaussian_gram(x)
    L = gaussian_gram(y)
    return _normalized(hsic_statistic(K, L), hsic_statistic(K, K), hsic_statistic(L, L))


def _gamma_test_from_grams(K: np.ndarray, L: np.ndarray) -> HsicTest:
    n = _check_grams(K, L)
    if n < 6:
        raise ValueError("The gamma approximation needs at least 6 observations.")

    Kc = _center(K)
    Lc = _center(L)
    stat = float(np.sum(Kc * Lc) / n)

    v = (Kc * Lc / 6.0) ** 2
    var = (np.sum(v) - np.trace(v)) / n / (n - 1)
    var = 72.0 * (n - 4) * (n - 5) / n / (n - 1) / (n - 2) / (n - 3) * var

    K0 = K - np.diag(np.diag(K))
    L0 = L - np.diag(np.diag(L))
    mu_x = float(np.sum(K0)) / n / (n - 1)
    mu_y = float(np.sum(L0)) / n / (n - 1)
    mean = (1.0 + mu_x * mu_y - mu_x - mu_y) / n

    if var <= 0 or mean <= 0 or not np.isfinite(var):
        return HsicTest(statistic=stat, p_value=1.0, method="gamma")

    shape = mean * mean / var
    scale = var * n / mean
    p_value = float(gamma.sf(stat, a=shape, scale=scale))
    return HsicTest(statistic=stat, p_value=p_value, method="gamma")


def _permutation_test_from_grams(K: np.ndarray, L: np.ndarray, n_permutations: int, seed: Optional[int]) -> HsicTest:
    n = _check_grams(K, L)
    if n_permutations <= 0:
        raise ValueError("n_permutations must be a positive integer.")
    rng = np.random.default_rng(seed)
    Kc = _center(K)
    observed = float(np.sum(Kc * L) / (n * n))
    exceed = 0
    for _ in range(n_permutations):
        perm = rng.permutation(n)
        if float(np.sum(Kc * L[np.ix_(perm, perm)]) / (n * n)) >= observed:
            exceed += 1
    p_value = (1.0 + exceed) / (1.0 + n_permutations)
    return HsicTest(statistic=observed, p_value=float(p_value), method="permutation")


def hsic_gamma_test(x, y) -> HsicTest:
    return _gamma_test_from_grams(gaussian_gram(x), gaussian_gram(y))


def hsic_permutation_test(x, y, n_permutations: int = 200, seed: Optional[int] = None) -> HsicTest:
    return _permutation_test_from_grams(gaussian_gram(x), gaussian_gram(y), n_permutations, seed)


def screen_predictors(
    X: pd.DataFrame,
    y,
    *,
    alpha: float = 0.05,
    test: str = "gamma",
    n_permutations: int = 200,
    seed: Optional[int] = None,
) -> pd.DataFrame:
    """HSIC independence test of each predictor against the response.

    Returns one row per predictor sorted by R2-HSIC (descending); a predictor
    is kept when its p-value is at most ``alpha``.
    """

    if test not in {"gamma", "permutation"}:
        raise ValueError(f"Unknown HSIC test: {test}")
    if not 0.0 < alpha < 1.0:
        raise ValueError("alpha must lie in (0, 1).")
    if X.shape[1] == 0:
        raise ValueError("No predictors to screen.")
    y_arr = np.asarray(y, dtype=float)
    if y_arr.shape[0] != len(X):
        raise ValueError(f"Response has {y_arr.shape[0]} rows but X has {len(X)}.")

    L = gaussian_gram(y_arr)
    h_yy = hsic_statistic(L, L)

    rows = []
    for col in X.columns.astype(str).tolist():
        K = gaussian_gram(X[col].to_numpy(dtype=float))
        h_xy = hsic_statistic(K, L)
        if test == "gamma":
            result = _gamma_test_from_grams(K, L)
        else:
            result = _permutation_test_from_grams(K, L, n_permutations, seed)
        rows.append(
            {
                "predictor": col,
                "hsic": h_xy,
                "r2_hsic": _normalized(h_xy, hsic_statistic(K, K), h_yy),
                "p_value": result.p_value,
                "test": result.method,
            }
        )

    out = pd.DataFrame(rows)
    out["selected"] = out["p_value"] <= alpha
    return out.sort_values(["r2_hsic", "predictor"], ascending=[False, True], kind="mergesort").reset_index(drop=True)


def pairwise_dependence(X: pd.DataFrame) -> pd.DataFrame:
    """Symmetric matrix of R2-HSIC between every pair of columns."""

    cols = X.columns.astype(str).tolist()
    if not cols:
        raise ValueError("No columns given.")
    grams = [gaussian_gram(X[c].to_numpy(dtype=float)) for c in cols]
    self_hsic = [hsic_statistic(K, K) for K in grams]

    p = len(cols)
    mat = np.eye(p)
    for i in range(p):
        for j in range(i + 1, p):
            value = _normalized(hsic_statistic(grams[i], grams[j]), self_hsic[i], self_hsic[j])
            mat[i, j] = mat[j, i] = value
    return pd.DataFrame(mat, index=cols, columns=cols)
