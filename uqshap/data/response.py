from typing import Mapping, Optional

import numpy as np

from .rasters import RasterStack


def synthesize_response(
    stack: RasterStack,
    coefficients: Mapping[str, float],
    *,
    intercept: float = 0.0,
    noise_sd: float = 0.0,
    noise_layer: Optional[str] = None,
    seed: Optional[int] = None,
) -> np.ndarray:
    """Linear-combination response surface on the stack's grid.

    With ``noise_sd == 0`` (default) the surface is deterministic. Otherwise
    Gaussian noise is added; when ``noise_layer`` is given its standard
    deviation at each cell is ``noise_sd * |layer|``.
    """

    if not coefficients:
        raise ValueError("At least one response coefficient is required.")
    unknown = [name for name in coefficients if name not in stack.layers]
    if unknown:
        raise ValueError(f"Response coefficients refer to unknown layers: {unknown}")
    if noise_sd < 0:
        raise ValueError("noise_sd must be >= 0.")

    surface = np.full(stack.shape, float(intercept), dtype=float)
    for name, coef in coefficients.items():
        surface = surface + float(coef) * stack.layers[name]

    if noise_sd > 0:
        rng = np.random.default_rng(seed)
        scale = np.full(stack.shape, float(noise_sd))
        if noise_layer is not None:
            if noise_layer not in stack.layers:
                raise ValueError(f"Unknown noise layer: {noise_layer}")
            scale = float(noise_sd) * np.abs(stack.layers[noise_layer])
        surface = surface + rng.standard_normal(stack.shape) * scale

    return surface
