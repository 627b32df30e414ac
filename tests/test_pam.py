import numpy as np
import pandas as pd
import pytest

from uqshap.grouping.pam import (
    PredictorGroups,
    dependence_to_dissimilarity,
    group_predictors,
    pam,
    silhouette_by_k,
)


def _block_dependence() -> pd.DataFrame:
    names = ["a", "b", "c", "d", "e", "f"]
    mat = np.full((6, 6), 0.05)
    mat[:3, :3] = 0.9
    mat[3:, 3:] = 0.8
    mat[3, 4] = mat[4, 3] = 0.7
    np.fill_diagonal(mat, 1.0)
    return pd.DataFrame(mat, index=names, columns=names)


def test_pam_recovers_blocks():
    D = dependence_to_dissimilarity(_block_dependence())
    result = pam(D, 2)
    labels = result.labels
    assert len(set(labels[:3])) == 1
    assert len(set(labels[3:])) == 1
    assert labels[0] != labels[3]
    # best medoids: any of a/b/c (cost 0.2) and f (cost 0.2 + 0.2)
    assert result.cost == pytest.approx(0.6)
    assert 5 in result.medoids.tolist()
    for j, m in enumerate(result.medoids):
        assert labels[m] == j


def test_pam_single_cluster_uses_most_central_point():
    D = np.array([[0.0, 1.0, 4.0], [1.0, 0.0, 2.0], [4.0, 2.0, 0.0]])
    result = pam(D, 1)
    assert result.medoids.tolist() == [1]
    assert result.cost == pytest.approx(3.0)
    assert result.labels.tolist() == [0, 0, 0]


def test_pam_each_point_its_own_medoid():
    D = np.array([[0.0, 1.0], [1.0, 0.0]])
    result = pam(D, 2)
    assert sorted(result.medoids.tolist()) == [0, 1]
    assert result.cost == 0.0


def test_pam_validates_inputs():
    with pytest.raises(ValueError, match="square"):
        pam(np.zeros((2, 3)), 1)
    with pytest.raises(ValueError, match="symmetric"):
        pam(np.array([[0.0, 1.0], [2.0, 0.0]]), 1)
    with pytest.raises(ValueError, match="non-negative"):
        pam(np.array([[0.0, -1.0], [-1.0, 0.0]]), 1)
    with pytest.raises(ValueError, match="k must lie"):
        pam(np.zeros((3, 3)), 4)


def test_silhouette_prefers_two_blocks():
    D = dependence_to_dissimilarity(_block_dependence())
    table = silhouette_by_k(D, range(1, 7))
    assert table["k"].tolist() == [2, 3, 4, 5]
    best = table.sort_values("silhouette", ascending=False).iloc[0]
    assert int(best["k"]) == 2
    assert best["silhouette"] > 0.7


def test_group_predictors_by_silhouette():
    groups = group_predictors(_block_dependence(), max_groups=6)
    assert groups.n_groups == 2
    assert groups.groups == {"G1": ["a", "b", "c"], "G2": ["d", "e", "f"]}
    assert groups.medoids["G1"] in {"a", "b", "c"}
    assert groups.silhouette is not None and groups.silhouette > 0.7
    assert groups.group_of("e") == "G2"
    assignment = groups.assignment()
    assert assignment["predictor"].tolist() == ["a", "b", "c", "d", "e", "f"]
    assert assignment["is_medoid"].sum() == 2


def test_group_predictors_fixed_k_and_small_inputs():
    fixed = group_predictors(_block_dependence(), n_groups=1)
    assert fixed.groups == {"G1": ["a", "b", "c", "d", "e", "f"]}

    pair = pd.DataFrame([[1.0, 0.3], [0.3, 1.0]], index=["u", "v"], columns=["u", "v"])
    singles = group_predictors(pair)
    assert singles.groups == {"G1": ["u"], "G2": ["v"]}
    assert singles.silhouette is None

    with pytest.raises(ValueError, match="n_groups"):
        group_predictors(pair, n_groups=3)


def test_predictor_groups_dict_round_trip():
    groups = group_predictors(_block_dependence())
    back = PredictorGroups.from_dict(groups.to_dict())
    assert back.groups == groups.groups
    assert back.medoids == groups.medoids
    assert back.cost == pytest.approx(groups.cost)


def test_group_predictors_single_predictor():
    single = pd.DataFrame([[1.0]], index=["a"], columns=["a"])
    groups = group_predictors(single)
    assert groups.groups == {"G1": ["a"]}
    assert groups.medoids == {"G1": "a"}
    assert groups.n_groups == 1
