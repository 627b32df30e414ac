from typing import Iterable

import numpy as np


def assert_required_columns(df, required: Iterable[str]) -> None:
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns: {missing}")


def assert_finite(df, columns: Iterable[str]) -> None:
    columns = list(columns)
    assert_required_columns(df, columns)
    values = df[columns].to_numpy(dtype=float)
    bad = [c for c, ok in zip(columns, np.isfinite(values).all(axis=0)) if not ok]
    if bad:
        raise ValueError(f"Columns contain NaN or infinite values: {bad}")
