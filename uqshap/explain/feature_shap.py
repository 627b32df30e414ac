from typing import Mapping, Sequence, Tuple

import numpy as np
import pandas as pd
import shap

from .group_shapley import validate_groups


def tree_shap_values(model, X: pd.DataFrame, background: pd.DataFrame) -> Tuple[pd.DataFrame, float]:
    """Per-feature interventional TreeSHAP values and the explainer's base value."""

    explainer = shap.TreeExplainer(model, data=background[X.columns], feature_perturbation="interventional")
    values = np.asarray(explainer.shap_values(X, check_additivity=False), dtype=float)
    base = float(np.ravel(explainer.expected_value)[0])
    return pd.DataFrame(values, columns=X.columns, index=X.index), base


def aggregate_by_group(shap_values: pd.DataFrame, groups: Mapping[str, Sequence[str]]) -> pd.DataFrame:
    """Sum member-feature SHAP values within each group."""

    validate_groups(groups, shap_values.columns.astype(str).tolist())
    return pd.DataFrame(
        {name: shap_values[list(members)].sum(axis=1) for name, members in groups.items()},
        index=shap_values.index,
    )
