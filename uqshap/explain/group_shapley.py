"""Exact Shapley values for groups of features.

Players are feature groups rather than single features. For an instance x
and a coalition S of groups, the value function is interventional:

    v(S) = mean_b f(x_S, b_{-S})

where b runs over a background sample. With G groups all 2^G coalitions
are enumerated, so

    phi_g = sum_{S not containing g} |S|! (G - |S| - 1)! / G! * (v(S + g) - v(S))

and the values are additive: v(empty) + sum_g phi_g = f(x).
"""

from __future__ import annotations

from dataclasses import dataclass
from math import factorial
from typing import Callable, Dict, List, Mapping, Sequence, Union

import numpy as np
import pandas as pd

MAX_EXACT_GROUPS = 15


def validate_groups(groups: Mapping[str, Sequence[str]], features: Sequence[str]) -> None:
    """Raise ValueError unless the groups partition ``features`` exactly."""

    if not groups:
        raise ValueError("At least one group is required.")
    seen: Dict[str, str] = {}
    overlaps = []
    for name, members in groups.items():
        if not members:
            raise ValueError(f"Group {name} is empty.")
        for m in members:
            if m in seen:
                overlaps.append((m, seen[m], name))
            seen[m] = name
    if overlaps:
        raise ValueError(f"Features assigned to more than one group: {overlaps}")
    unknown = sorted(set(seen) - set(features))
    if unknown:
        raise ValueError(f"Groups refer to unknown features: {unknown}")
    missing = [f for f in features if f not in seen]
    if missing:
        raise ValueError(f"Features not covered by any group: {missing}")


@dataclass
class GroupShapleyResult:
    values: pd.DataFrame
    base_value: float
    prediction: pd.Series

    def additivity_gap(self) -> float:
        recon = self.base_value + self.values.sum(axis=1)
        return float(np.max(np.abs(recon.to_numpy() - self.prediction.to_numpy()))) if len(recon) else 0.0

    def mean_abs(self) -> pd.Series:
        return self.values.abs().mean(axis=0).sort_values(ascending=False, kind="mergesort")

    def share(self) -> pd.Series:
        m = self.mean_abs()
        total = float(m.sum())
        return m / total if total > 0 else m * 0.0

    def dominant_group(self) -> pd.Series:
        return self.values.abs().idxmax(axis=1)

    def to_frame(self) -> pd.DataFrame:
        out = self.values.copy()
        out.insert(0, "base_value", self.base_value)
        out.insert(1, "prediction", self.prediction.to_numpy())
        out["dominant_group"] = self.dominant_group()
        return out


def _shapley_weights(n_groups: int) -> np.ndarray:
    g = n_groups
    return np.array([factorial(s) * factorial(g - s - 1) / factorial(g) for s in range(g)], dtype=float)


class GroupShapleyExplainer:
    def __init__(
        self,
        model: Union[Callable, object],
        background: pd.DataFrame,
        groups: Mapping[str, Sequence[str]],
        batch_size: int = 20000,
    ):
        self._predict = model.predict if hasattr(model, "predict") else model
        if not callable(self._predict):
            raise ValueError("model must be callable or expose predict().")
        if len(background) == 0:
            raise ValueError("Background sample is empty.")
        if batch_size <= 0:
            raise ValueError("batch_size must be positive.")

        self.features: List[str] = background.columns.astype(str).tolist()
        validate_groups(groups, self.features)
        if len(groups) > MAX_EXACT_GROUPS:
            raise ValueError(
                f"Exact enumeration supports at most {MAX_EXACT_GROUPS} groups; got {len(groups)}."
            )

        self.group_names: List[str] = list(groups.keys())
        self.group_index = [
            np.array([self.features.index(m) for m in groups[name]], dtype=int) for name in self.group_names
        ]
        self.background = background[self.features].reset_index(drop=True)
        self.batch_size = int(batch_size)
        self.base_value = float(np.mean(self._call(self.background.to_numpy(dtype=float))))

    def _call(self, matrix: np.ndarray) -> np.ndarray:
        out = np.asarray(self._predict(pd.DataFrame(matrix, columns=self.features)), dtype=float)
        return out.reshape(-1)

    def _coalition_value(self, x: np.ndarray, cols: np.ndarray) -> np.ndarray:
        """v(S) for every row of x, S given by its feature columns."""

        bg = self.background.to_numpy(dtype=float)
        n_bg = bg.shape[0]
        chunk = max(1, self.batch_size // n_bg)
        out = np.empty(x.shape[0], dtype=float)
        for start in range(0, x.shape[0], chunk):
            block = x[start : start + chunk]
            m = block.shape[0]
            stacked = np.tile(bg, (m, 1))
            stacked[:, cols] = np.repeat(block[:, cols], n_bg, axis=0)
            out[start : start + m] = self._call(stacked).reshape(m, n_bg).mean(axis=1)
        return out

    def explain(self, X: pd.DataFrame) -> GroupShapleyResult:
        missing = [f for f in self.features if f not in X.columns]
        if missing:
            raise ValueError(f"Instances lack explained features: {missing}")
        x = X[self.features].to_numpy(dtype=float)
        n = x.shape[0]
        G = len(self.group_names)
        full = (1 << G) - 1

        value = np.empty((n, full + 1), dtype=float)
        value[:, 0] = self.base_value
        value[:, full] = self._call(x) if n else np.empty(0)
        for mask in range(1, full):
            cols = np.concatenate([self.group_index[g] for g in range(G) if mask >> g & 1])
            value[:, mask] = self._coalition_value(x, cols) if n else np.empty(0)

        weights = _shapley_weights(G)
        phi = np.zeros((n, G), dtype=float)
        for g in range(G):
            bit = 1 << g
            for mask in range(full + 1):
                if mask & bit:
                    continue
                phi[:, g] += weights[bin(mask).count("1")] * (value[:, mask | bit] - value[:, mask])

        values = pd.DataFrame(phi, columns=self.group_names, index=X.index)
        prediction = pd.Series(value[:, full], index=X.index, name="prediction")
        return GroupShapleyResult(values=values, base_value=self.base_value, prediction=prediction)
