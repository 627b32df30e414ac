from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy.ndimage import gaussian_filter


@dataclass
class RasterStack:
    """Named 2-D layers sharing one grid.

    ``x`` holds the cell-centre coordinate of each column and ``y`` the
    cell-centre coordinate of each row (top row first, as rasterio reads it).
    """

    layers: Dict[str, np.ndarray]
    x: np.ndarray
    y: np.ndarray
    crs: Optional[str] = None
    metadata: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.layers:
            raise ValueError("RasterStack needs at least one layer.")
        shapes = {name: np.shape(arr) for name, arr in self.layers.items()}
        if len(set(shapes.values())) != 1:
            raise ValueError(f"All layers must share one grid shape; observed: {shapes}")
        shape = next(iter(shapes.values()))
        if len(shape) != 2:
            raise ValueError(f"Layers must be 2-D arrays; observed shape {shape}")
        self.layers = {name: np.asarray(arr, dtype=float) for name, arr in self.layers.items()}
        self.x = np.asarray(self.x, dtype=float)
        self.y = np.asarray(self.y, dtype=float)
        if self.x.shape != (shape[1],) or self.y.shape != (shape[0],):
            raise ValueError(
                f"Coordinate vectors do not match grid {shape}: len(x)={self.x.size}, len(y)={self.y.size}"
            )

    @property
    def names(self) -> List[str]:
        return list(self.layers.keys())

    @property
    def shape(self) -> Tuple[int, int]:
        return next(iter(self.layers.values())).shape

    def valid_mask(self) -> np.ndarray:
        mask = np.ones(self.shape, dtype=bool)
        for arr in self.layers.values():
            mask &= np.isfinite(arr)
        return mask

    def select(self, names: Iterable[str]) -> "RasterStack":
        names = list(names)
        unknown = [n for n in names if n not in self.layers]
        if unknown:
            raise ValueError(f"Unknown layers: {unknown}; available: {self.names}")
        return RasterStack({n: self.layers[n] for n in names}, self.x, self.y, self.crs, dict(self.metadata))

    def with_layer(self, name: str, values: np.ndarray) -> "RasterStack":
        layers = dict(self.layers)
        layers[name] = values
        return RasterStack(layers, self.x, self.y, self.crs, dict(self.metadata))

    def to_frame(self) -> pd.DataFrame:
        """Long table of valid cells: x, y, row, col and one column per layer."""

        rows, cols = np.nonzero(self.valid_mask())
        data = {"x": self.x[cols], "y": self.y[rows], "row": rows, "col": cols}
        for name, arr in self.layers.items():
            data[name] = arr[rows, cols]
        return pd.DataFrame(data)


def _standardize(arr: np.ndarray) -> np.ndarray:
    sd = float(np.std(arr))
    if sd == 0.0:
        return arr - float(np.mean(arr))
    return (arr - float(np.mean(arr))) / sd


def simulate_raster_stack(
    shape: Tuple[int, int],
    recipes: Sequence[Mapping],
    seed: int,
    cell_size: float = 1.0,
) -> RasterStack:
    """Simulate spatially correlated predictor layers.

    Every recipe contributes a smoothed white-noise field (``sigma`` cells).
    Parents listed in the recipe are mixed in with their weights, the
    remaining variance coming from the layer's own field, and the result is
    standardized. Parents must appear earlier in ``recipes``.
    """

    n_rows, n_cols = int(shape[0]), int(shape[1])
    if n_rows < 2 or n_cols < 2:
        raise ValueError(f"Grid shape must be at least 2x2; got {shape}")

    rng = np.random.default_rng(seed)
    layers: Dict[str, np.ndarray] = {}
    for recipe in recipes:
        name = recipe["name"]
        if name in layers:
            raise ValueError(f"Duplicate layer name in recipes: {name}")
        own = _standardize(gaussian_filter(rng.standard_normal((n_rows, n_cols)), sigma=float(recipe["sigma"])))

        parents = dict(recipe.get("parents") or {})
        missing = [p for p in parents if p not in layers]
        if missing:
            raise ValueError(f"Layer {name} refers to parents not yet simulated: {missing}")

        mixed = np.zeros((n_rows, n_cols), dtype=float)
        for parent, weight in parents.items():
            mixed += float(weight) * layers[parent]
        share = float(sum(w * w for w in parents.values()))
        own_weight = np.sqrt(max(1.0 - share, 0.05))
        layers[name] = _standardize(mixed + own_weight * own)

    x = (np.arange(n_cols) + 0.5) * cell_size
    y = (np.arange(n_rows)[::-1] + 0.5) * cell_size
    return RasterStack(layers, x, y, crs=None, metadata={"source": "simulated", "seed": int(seed)})


def load_raster_stack(paths: Mapping[str, Path]) -> RasterStack:
    """Read band 1 of each GeoTIFF into one stack; nodata becomes NaN."""

    import rasterio

    if not paths:
        raise ValueError("No raster paths given.")

    layers: Dict[str, np.ndarray] = {}
    ref_transform = None
    ref_shape = None
    crs = None
    for name, path in paths.items():
        with rasterio.open(path) as src:
            arr = src.read(1).astype(float)
            if src.nodata is not None:
                arr[arr == src.nodata] = np.nan
            if ref_transform is None:
                ref_transform = src.transform
                ref_shape = arr.shape
                crs = src.crs.to_string() if src.crs is not None else None
            elif arr.shape != ref_shape or src.transform != ref_transform:
                raise ValueError(f"Raster {path} does not share the grid of the first raster.")
        layers[name] = arr

    n_rows, n_cols = ref_shape
    x = np.array([ref_transform.c + ref_transform.a * (i + 0.5) for i in range(n_cols)])
    y = np.array([ref_transform.f + ref_transform.e * (j + 0.5) for j in range(n_rows)])
    return RasterStack(layers, x, y, crs=crs, metadata={"source": "geotiff", "paths": {k: str(v) for k, v in paths.items()}})


def normalize_layers(stack: RasterStack, method: str = "minmax") -> RasterStack:
    """Scale every layer independently, ignoring NaN cells."""

    out: Dict[str, np.ndarray] = {}
    for name, arr in stack.layers.items():
        finite = arr[np.isfinite(arr)]
        if finite.size == 0:
            raise ValueError(f"Layer {name} has no finite cells.")
        if method == "minmax":
            lo, hi = float(finite.min()), float(finite.max())
            if hi == lo:
                raise ValueError(f"Layer {name} is constant; cannot min-max normalize.")
            out[name] = (arr - lo) / (hi - lo)
        elif method == "zscore":
            mu, sd = float(finite.mean()), float(finite.std())
            if sd == 0.0:
                raise ValueError(f"Layer {name} is constant; cannot z-score normalize.")
            out[name] = (arr - mu) / sd
        else:
            raise ValueError(f"Unknown normalization method: {method}")

    metadata = dict(stack.metadata)
    metadata["normalization"] = method
    return RasterStack(out, stack.x, stack.y, stack.crs, metadata)


def save_raster_stack(stack: RasterStack, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    arrays = {f"layer__{name}": arr for name, arr in stack.layers.items()}
    np.savez_compressed(
        path,
        x=stack.x,
        y=stack.y,
        names=np.array(stack.names),
        crs=np.array(stack.crs or ""),
        metadata=np.array(json.dumps(stack.metadata, sort_keys=True, default=str)),
        **arrays,
    )


def read_raster_stack(path: Path) -> RasterStack:
    with np.load(path, allow_pickle=False) as npz:
        names = [str(n) for n in npz["names"].tolist()]
        layers = {name: npz[f"layer__{name}"] for name in names}
        crs = str(npz["crs"]) or None
        metadata = json.loads(str(npz["metadata"])) if "metadata" in npz.files else {}
        metadata["loaded_from"] = str(path)
        return RasterStack(layers, npz["x"], npz["y"], crs=crs, metadata=metadata)
