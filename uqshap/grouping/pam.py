from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

import numpy as np
import pandas as pd
from sklearn.metrics import silhouette_score


@dataclass(frozen=True)
class PamResult:
    medoids: np.ndarray
    labels: np.ndarray
    cost: float
    n_iter: int


def _check_dissimilarity(D) -> np.ndarray:
    D = np.asarray(D, dtype=float)
    if D.ndim != 2 or D.shape[0] != D.shape[1] or D.shape[0] == 0:
        raise ValueError(f"Dissimilarity must be a non-empty square matrix; got shape {D.shape}")
    if not np.isfinite(D).all():
        raise ValueError("Dissimilarity contains NaN or infinite values.")
    if (D < 0).any():
        raise ValueError("Dissimilarity must be non-negative.")
    if not np.allclose(D, D.T, atol=1e-10):
        raise ValueError("Dissimilarity must be symmetric.")
    return D


def _total_cost(D: np.ndarray, medoids: List[int]) -> float:
    return float(D[:, medoids].min(axis=1).sum())


def pam(dissimilarity, k: int, max_iter: int = 100) -> PamResult:
    """Partitioning Around Medoids (Kaufman & Rousseeuw): BUILD, then SWAP.

    Ties are broken towards the lowest index so results are deterministic.
    """

    D = _check_dissimilarity(dissimilarity)
    n = D.shape[0]
    if not 1 <= int(k) <= n:
        raise ValueError(f"k must lie in [1, {n}]; got {k}")
    k = int(k)

    # BUILD
    medoids = [int(np.argmin(D.sum(axis=1)))]
    nearest = D[:, medoids[0]].copy()
    while len(medoids) < k:
        best_gain, best_c = -1.0, -1
        for c in range(n):
            if c in medoids:
                continue
            gain = float(np.maximum(nearest - D[:, c], 0.0).sum())
            if gain > best_gain:
                best_gain, best_c = gain, c
        medoids.append(best_c)
        nearest = np.minimum(nearest, D[:, best_c])

    # SWAP
    cost = _total_cost(D, medoids)
    n_iter = 0
    while n_iter < max_iter:
        n_iter += 1
        best_cost, best_swap = cost, None
        for i in range(k):
            for h in range(n):
                if h in medoids:
                    continue
                candidate = medoids.copy()
                candidate[i] = h
                c = _total_cost(D, candidate)
                if c < best_cost - 1e-12:
                    best_cost, best_swap = c, (i, h)
        if best_swap is None:
            break
        medoids[best_swap[0]] = best_swap[1]
        cost = best_cost

    labels = np.argmin(D[:, medoids], axis=1)
    for j, m in enumerate(medoids):
        labels[m] = j
    return PamResult(medoids=np.array(medoids, dtype=int), labels=labels.astype(int), cost=cost, n_iter=n_iter)


def silhouette_by_k(dissimilarity, ks: Iterable[int], max_iter: int = 100) -> pd.DataFrame:
    """Mean silhouette width of the PAM partition for each admissible k."""

    D = _check_dissimilarity(dissimilarity)
    n = D.shape[0]
    D = D.copy()
    np.fill_diagonal(D, 0.0)
    rows = []
    for k in ks:
        if not 2 <= int(k) <= n - 1:
            continue
        result = pam(D, int(k), max_iter=max_iter)
        score = float(silhouette_score(D, result.labels, metric="precomputed"))
        rows.append({"k": int(k), "silhouette": score, "cost": result.cost})
    return pd.DataFrame(rows, columns=["k", "silhouette", "cost"])


@dataclass
class PredictorGroups:
    groups: Dict[str, List[str]]
    medoids: Dict[str, str]
    silhouette: Optional[float] = None
    silhouette_table: pd.DataFrame = field(default_factory=lambda: pd.DataFrame(columns=["k", "silhouette", "cost"]))
    cost: float = 0.0

    @property
    def n_groups(self) -> int:
        return len(self.groups)

    def group_of(self, predictor: str) -> str:
        for name, members in self.groups.items():
            if predictor in members:
                return name
        raise KeyError(predictor)

    def assignment(self) -> pd.DataFrame:
        rows = []
        for name, members in self.groups.items():
            for member in members:
                rows.append(
                    {
                        "predictor": member,
                        "group": name,
                        "medoid": self.medoids[name],
                        "is_medoid": member == self.medoids[name],
                    }
                )
        return pd.DataFrame(rows, columns=["predictor", "group", "medoid", "is_medoid"])

    def to_dict(self) -> dict:
        return {
            "groups": {k: list(v) for k, v in self.groups.items()},
            "medoids": dict(self.medoids),
            "silhouette": self.silhouette,
            "cost": self.cost,
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "PredictorGroups":
        return cls(
            groups={k: list(v) for k, v in payload["groups"].items()},
            medoids=dict(payload["medoids"]),
            silhouette=payload.get("silhouette"),
            cost=float(payload.get("cost", 0.0)),
        )


def dependence_to_dissimilarity(dependence: pd.DataFrame) -> np.ndarray:
    values = np.clip(dependence.to_numpy(dtype=float), 0.0, 1.0)
    D = 1.0 - 0.5 * (values + values.T)
    np.fill_diagonal(D, 0.0)
    return D


def group_predictors(
    dependence: pd.DataFrame,
    *,
    n_groups: Optional[int] = None,
    max_groups: int = 6,
    max_iter: int = 100,
) -> PredictorGroups:
    """Cluster predictors with PAM on the dissimilarity 1 - R2-HSIC.

    Without ``n_groups`` the number of groups maximizes the mean silhouette
    over 2..min(max_groups, p - 1); with fewer than three predictors every
    predictor forms its own group. Groups are named G1..Gk in the column
    order of their medoids.
    """

    names = dependence.columns.astype(str).tolist()
    if list(dependence.index.astype(str)) != names:
        raise ValueError("Dependence matrix must have identical row and column labels.")
    D = dependence_to_dissimilarity(dependence)
    p = len(names)

    table = silhouette_by_k(D, range(2, min(max_groups, p - 1) + 1), max_iter=max_iter) if p >= 3 else None

    if n_groups is not None:
        if not 1 <= int(n_groups) <= p:
            raise ValueError(f"n_groups must lie in [1, {p}]; got {n_groups}")
        k = int(n_groups)
    elif p < 3:
        k = p
    elif table.empty:
        k = 1
    else:
        best = table.sort_values(["silhouette", "k"], ascending=[False, True], kind="mergesort").iloc[0]
        k = int(best["k"])

    result = pam(D, k, max_iter=max_iter)
    order = np.argsort(result.medoids, kind="mergesort")

    groups: Dict[str, List[str]] = {}
    medoids: Dict[str, str] = {}
    for g, j in enumerate(order, start=1):
        name = f"G{g}"
        groups[name] = [names[i] for i in range(p) if result.labels[i] == j]
        medoids[name] = names[int(result.medoids[j])]

    silhouette = None
    if table is not None and not table.empty and (table["k"] == k).any():
        silhouette = float(table.loc[table["k"] == k, "silhouette"].iloc[0])

    return PredictorGroups(
        groups=groups,
        medoids=medoids,
        silhouette=silhouette,
        silhouette_table=table if table is not None else pd.DataFrame(columns=["k", "silhouette", "cost"]),
        cost=result.cost,
    )
