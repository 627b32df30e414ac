from typing import Optional

import numpy as np
import pandas as pd

from .rasters import RasterStack


def _points_frame(stack: RasterStack, rows: np.ndarray, cols: np.ndarray) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "x": stack.x[cols],
            "y": stack.y[rows],
            "row": rows.astype(int),
            "col": cols.astype(int),
        }
    )


def random_sample_points(stack: RasterStack, n: int, seed: int) -> pd.DataFrame:
    """Draw n distinct valid cells uniformly without replacement."""

    if n <= 0:
        raise ValueError("n must be a positive integer.")
    rows, cols = np.nonzero(stack.valid_mask())
    if n > rows.size:
        raise ValueError(f"Requested {n} random points but only {rows.size} valid cells exist.")
    rng = np.random.default_rng(seed)
    pick = np.sort(rng.choice(rows.size, size=n, replace=False))
    return _points_frame(stack, rows[pick], cols[pick])


def regular_sample_points(stack: RasterStack, n: int) -> pd.DataFrame:
    """Approximately n cells on a regular lattice spanning the grid.

    The lattice keeps the grid's aspect ratio and samples the centre of each
    lattice block; cells that are NaN in any layer are dropped, so fewer than
    n points may come back on masked grids.
    """

    if n <= 0:
        raise ValueError("n must be a positive integer.")
    n_rows, n_cols = stack.shape
    n = min(n, n_rows * n_cols)

    per_row = max(1, int(round(np.sqrt(n * n_cols / n_rows))))
    per_row = min(per_row, n_cols)
    per_col = min(max(1, int(round(n / per_row))), n_rows)

    row_idx = ((np.arange(per_col) + 0.5) * n_rows / per_col).astype(int)
    col_idx = ((np.arange(per_row) + 0.5) * n_cols / per_row).astype(int)
    rows, cols = np.meshgrid(row_idx, col_idx, indexing="ij")
    rows, cols = rows.ravel(), cols.ravel()

    keep = stack.valid_mask()[rows, cols]
    return _points_frame(stack, rows[keep], cols[keep])


def extract_values(
    stack: RasterStack,
    points: pd.DataFrame,
    response: Optional[np.ndarray] = None,
    response_name: str = "response",
) -> pd.DataFrame:
    """Attach layer values (and optionally the response) at each point's cell."""

    missing = [c for c in ("row", "col") if c not in points.columns]
    if missing:
        raise ValueError(f"Point table lacks grid index columns: {missing}")

    rows = points["row"].to_numpy(dtype=int)
    cols = points["col"].to_numpy(dtype=int)
    n_rows, n_cols = stack.shape
    if rows.size and (rows.min() < 0 or rows.max() >= n_rows or cols.min() < 0 or cols.max() >= n_cols):
        raise ValueError("Point indices fall outside the raster grid.")

    out = points.reset_index(drop=True).copy()
    for name, arr in stack.layers.items():
        out[name] = arr[rows, cols]
    if response is not None:
        if response_name in out.columns:
            raise ValueError(f"Response name {response_name!r} clashes with an existing column.")
        if np.shape(response) != stack.shape:
            raise ValueError(f"Response grid {np.shape(response)} does not match stack grid {stack.shape}")
        out[response_name] = np.asarray(response, dtype=float)[rows, cols]
    return out
