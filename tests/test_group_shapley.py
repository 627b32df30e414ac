import numpy as np
import pandas as pd
import pytest

from uqshap.explain.group_shapley import (
    MAX_EXACT_GROUPS,
    GroupShapleyExplainer,
    validate_groups,
)

WEIGHTS = {"a": 2.0, "b": -1.0, "c": 0.5, "d": 3.0}
GROUPS = {"G1": ["a", "b"], "G2": ["c"], "G3": ["d"]}


class Linear:
    def predict(self, X: pd.DataFrame) -> np.ndarray:
        return sum(w * X[f].to_numpy() for f, w in WEIGHTS.items())


def _frame(n: int, seed: int) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    return pd.DataFrame(rng.normal(size=(n, 4)), columns=list(WEIGHTS))


def test_linear_model_has_closed_form_group_values():
    background = _frame(40, 1)
    X = _frame(7, 2)
    result = GroupShapleyExplainer(Linear(), background, GROUPS).explain(X)

    mu = background.mean()
    for name, members in GROUPS.items():
        expected = sum(WEIGHTS[f] * (X[f] - mu[f]) for f in members)
        np.testing.assert_allclose(result.values[name], expected, atol=1e-10)
    assert result.base_value == pytest.approx(float(Linear().predict(background).mean()))
    assert result.additivity_gap() < 1e-10


def test_interactions_stay_additive_and_callables_work():
    def f(X):
        return X["a"].to_numpy() * X["c"].to_numpy() + np.maximum(X["d"].to_numpy(), 0.0)

    background = _frame(25, 3)
    X = _frame(10, 4)
    result = GroupShapleyExplainer(f, background, GROUPS).explain(X)
    assert result.additivity_gap() < 1e-10
    np.testing.assert_allclose(result.prediction, f(X))
    assert list(result.values.columns) == ["G1", "G2", "G3"]

    # a*c is split evenly between the two groups when the background is centred
    centred = background - background.mean()
    sym = GroupShapleyExplainer(lambda Z: Z["a"].to_numpy() * Z["c"].to_numpy(), centred, GROUPS).explain(X)
    np.testing.assert_allclose(sym.values["G1"], sym.values["G2"], atol=1e-10)
    np.testing.assert_allclose(sym.values["G3"], 0.0, atol=1e-12)


def test_batching_does_not_change_values():
    background = _frame(30, 5)
    X = _frame(9, 6)
    big = GroupShapleyExplainer(Linear(), background, GROUPS, batch_size=100000).explain(X)
    small = GroupShapleyExplainer(Linear(), background, GROUPS, batch_size=7).explain(X)
    pd.testing.assert_frame_equal(big.values, small.values)


def test_single_group_receives_whole_deviation():
    background = _frame(20, 7)
    X = _frame(5, 8)
    result = GroupShapleyExplainer(Linear(), background, {"all": list(WEIGHTS)}).explain(X)
    np.testing.assert_allclose(result.values["all"], Linear().predict(X) - result.base_value)


def test_result_summaries():
    background = _frame(20, 9)
    X = _frame(12, 10)
    result = GroupShapleyExplainer(Linear(), background, GROUPS).explain(X)
    share = result.share()
    assert share.sum() == pytest.approx(1.0)
    assert result.mean_abs().is_monotonic_decreasing
    dominant = result.dominant_group()
    assert set(dominant) <= set(GROUPS)
    frame = result.to_frame()
    assert frame.columns.tolist() == ["base_value", "prediction", "G1", "G2", "G3", "dominant_group"]


def test_validate_groups_errors():
    features = list(WEIGHTS)
    with pytest.raises(ValueError, match="more than one group"):
        validate_groups({"x": ["a", "b"], "y": ["b", "c", "d"]}, features)
    with pytest.raises(ValueError, match="not covered"):
        validate_groups({"x": ["a", "b"], "y": ["c"]}, features)
    with pytest.raises(ValueError, match="unknown"):
        validate_groups({"x": ["a", "b", "c", "d", "e"]}, features)
    with pytest.raises(ValueError, match="empty"):
        validate_groups({"x": [], "y": features}, features)


def test_explainer_guards():
    background = _frame(5, 11)
    with pytest.raises(ValueError, match="empty"):
        GroupShapleyExplainer(Linear(), background.iloc[:0], GROUPS)
    wide = pd.DataFrame(np.zeros((3, MAX_EXACT_GROUPS + 1)), columns=[f"f{i}" for i in range(MAX_EXACT_GROUPS + 1)])
    with pytest.raises(ValueError, match="at most"):
        GroupShapleyExplainer(lambda Z: np.zeros(len(Z)), wide, {c: [c] for c in wide.columns})
    explainer = GroupShapleyExplainer(Linear(), background, GROUPS)
    with pytest.raises(ValueError, match="lack"):
        explainer.explain(background.drop(columns=["d"]))
