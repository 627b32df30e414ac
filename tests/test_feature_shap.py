import numpy as np
import pandas as pd
import pytest

from uqshap.explain.feature_shap import aggregate_by_group, tree_shap_values
from uqshap.explain.group_shapley import GroupShapleyExplainer
from uqshap.models.forest import build_random_forest


@pytest.fixture(scope="module")
def fitted():
    rng = np.random.default_rng(2026)
    X = pd.DataFrame(rng.uniform(0, 1, size=(200, 3)), columns=["u", "v", "w"])
    y = 2 * X["u"] + np.sin(4 * X["v"]) * X["w"]
    rf = build_random_forest(seed=3, n_estimators=20, min_samples_leaf=3, n_jobs=1)
    rf.fit(X, y)
    return rf, X


def test_aggregate_by_group_sums_members():
    values = pd.DataFrame({"u": [1.0, 2.0], "v": [0.5, -1.0], "w": [3.0, 0.0]})
    out = aggregate_by_group(values, {"A": ["u", "w"], "B": ["v"]})
    assert out.columns.tolist() == ["A", "B"]
    np.testing.assert_allclose(out["A"], [4.0, 2.0])
    np.testing.assert_allclose(out["B"], [0.5, -1.0])
    with pytest.raises(ValueError):
        aggregate_by_group(values, {"A": ["u"]})


def test_tree_shap_is_additive(fitted):
    rf, X = fitted
    background = X.iloc[:30]
    values, base = tree_shap_values(rf, X.iloc[100:110], background)
    recon = base + values.sum(axis=1).to_numpy()
    np.testing.assert_allclose(recon, rf.predict(X.iloc[100:110]), atol=1e-5)


def test_singleton_groups_match_interventional_tree_shap(fitted):
    rf, X = fitted
    background = X.iloc[:30]
    explain = X.iloc[150:158]
    values, base = tree_shap_values(rf, explain, background)
    exact = GroupShapleyExplainer(rf, background, {c: [c] for c in X.columns}).explain(explain)
    assert exact.base_value == pytest.approx(base, abs=1e-5)
    np.testing.assert_allclose(exact.values.to_numpy(), values.to_numpy(), atol=1e-5)
