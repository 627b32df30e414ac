from pathlib import Path

import numpy as np
import pytest

from uqshap.config import SIMULATED_LAYERS
from uqshap.data.rasters import (
    RasterStack,
    load_raster_stack,
    normalize_layers,
    read_raster_stack,
    save_raster_stack,
    simulate_raster_stack,
)


def _corr(a: np.ndarray, b: np.ndarray) -> float:
    return float(np.corrcoef(a.ravel(), b.ravel())[0, 1])


def test_simulation_is_deterministic_and_correlated():
    a = simulate_raster_stack((60, 50), SIMULATED_LAYERS, seed=2026)
    b = simulate_raster_stack((60, 50), SIMULATED_LAYERS, seed=2026)
    c = simulate_raster_stack((60, 50), SIMULATED_LAYERS, seed=2027)

    assert a.names == [r["name"] for r in SIMULATED_LAYERS]
    assert a.shape == (60, 50)
    assert a.x.shape == (50,) and a.y.shape == (60,)
    for name in a.names:
        np.testing.assert_array_equal(a.layers[name], b.layers[name])
    assert not np.allclose(a.layers["elevation"], c.layers["elevation"])

    assert _corr(a.layers["slope"], a.layers["elevation"]) > 0.5
    assert _corr(a.layers["temperature"], a.layers["elevation"]) < -0.5
    assert _corr(a.layers["humidity"], a.layers["precipitation"]) > 0.5


def test_simulation_rejects_unknown_parent():
    with pytest.raises(ValueError, match="parents"):
        simulate_raster_stack((10, 10), [{"name": "b", "sigma": 1.0, "parents": {"a": 0.5}}], seed=1)


def test_stack_rejects_mismatched_layers():
    with pytest.raises(ValueError, match="grid shape"):
        RasterStack({"a": np.zeros((3, 4)), "b": np.zeros((4, 3))}, np.arange(4), np.arange(3))


def test_minmax_normalization_ignores_nan():
    arr = np.array([[0.0, 5.0], [10.0, np.nan]])
    stack = RasterStack({"a": arr}, np.array([0.5, 1.5]), np.array([1.5, 0.5]))
    out = normalize_layers(stack, "minmax")
    np.testing.assert_allclose(out.layers["a"][:, 0], [0.0, 1.0])
    assert out.layers["a"][0, 1] == pytest.approx(0.5)
    assert np.isnan(out.layers["a"][1, 1])
    assert out.metadata["normalization"] == "minmax"


def test_zscore_normalization():
    stack = simulate_raster_stack((20, 20), SIMULATED_LAYERS[:2], seed=3)
    out = normalize_layers(stack, "zscore")
    for arr in out.layers.values():
        assert float(np.mean(arr)) == pytest.approx(0.0, abs=1e-10)
        assert float(np.std(arr)) == pytest.approx(1.0)


def test_constant_layer_cannot_be_normalized():
    stack = RasterStack({"flat": np.ones((3, 3))}, np.arange(3), np.arange(3))
    with pytest.raises(ValueError, match="constant"):
        normalize_layers(stack)
    with pytest.raises(ValueError, match="Unknown normalization"):
        normalize_layers(simulate_raster_stack((5, 5), SIMULATED_LAYERS[:1], seed=1), "robust")


def test_to_frame_keeps_valid_cells_only():
    a = np.arange(6, dtype=float).reshape(2, 3)
    b = a.copy()
    b[0, 1] = np.nan
    stack = RasterStack({"a": a, "b": b}, np.array([10.0, 20.0, 30.0]), np.array([5.0, 1.0]))
    frame = stack.to_frame()
    assert len(frame) == 5
    assert frame.columns.tolist() == ["x", "y", "row", "col", "a", "b"]
    assert not ((frame["row"] == 0) & (frame["col"] == 1)).any()
    first = frame.iloc[0]
    assert (first["x"], first["y"], first["a"]) == (10.0, 5.0, 0.0)


def test_select_and_with_layer():
    stack = simulate_raster_stack((8, 8), SIMULATED_LAYERS, seed=5)
    sub = stack.select(["slope", "elevation"])
    assert sub.names == ["slope", "elevation"]
    with pytest.raises(ValueError, match="Unknown layers"):
        stack.select(["nope"])
    extended = stack.with_layer("y", np.zeros(stack.shape))
    assert "y" in extended.names and "y" not in stack.names


def test_npz_round_trip(tmp_path: Path):
    stack = simulate_raster_stack((12, 9), SIMULATED_LAYERS[:3], seed=7)
    stack = normalize_layers(stack, method="zscore")
    path = tmp_path / "stack.npz"
    save_raster_stack(stack, path)
    back = read_raster_stack(path)
    assert back.names == stack.names
    assert back.crs is None
    np.testing.assert_allclose(back.x, stack.x)
    np.testing.assert_allclose(back.layers["slope"], stack.layers["slope"])
    assert back.metadata["seed"] == 7
    assert back.metadata["normalization"] == "zscore"
    assert back.metadata["source"] == "simulated"
    assert back.metadata["loaded_from"] == str(path)


def test_load_geotiffs_with_nodata(tmp_path: Path):
    rasterio = pytest.importorskip("rasterio")
    from rasterio.transform import from_origin

    transform = from_origin(100.0, 50.0, 10.0, 10.0)
    paths = {}
    for name, fill in [("alpha", 1.0), ("beta", 2.0)]:
        data = np.full((4, 5), fill, dtype="float32")
        data[0, 0] = -9999.0
        path = tmp_path / f"{name}.tif"
        with rasterio.open(
            path, "w", driver="GTiff", height=4, width=5, count=1, dtype="float32",
            transform=transform, nodata=-9999.0,
        ) as dst:
            dst.write(data, 1)
        paths[name] = path

    stack = load_raster_stack(paths)
    assert stack.names == ["alpha", "beta"]
    assert stack.shape == (4, 5)
    assert np.isnan(stack.layers["alpha"][0, 0])
    np.testing.assert_allclose(stack.x, [105.0, 115.0, 125.0, 135.0, 145.0])
    np.testing.assert_allclose(stack.y, [45.0, 35.0, 25.0, 15.0])
    assert int(stack.valid_mask().sum()) == 19
