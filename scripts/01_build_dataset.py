import sys
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import argparse
import hashlib
import os
import tempfile

_mpl_cache_dir = Path(tempfile.gettempdir()) / "matplotlib"
_mpl_cache_dir.mkdir(parents=True, exist_ok=True)
os.environ.setdefault("MPLCONFIGDIR", str(_mpl_cache_dir))

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd

from uqshap.config import (
    DATASET_VERSION,
    DEFAULT_SEED,
    GRID_SHAPE,
    N_TEST,
    N_TRAIN,
    NORMALIZATION_METHOD,
    OUTPUTS_DIR,
    PROCESSED_DIR,
    RANDOM_SEEDS,
    RASTER_STACK_FILE,
    RESPONSE_COEFFICIENTS,
    RESPONSE_INTERCEPT,
    RESPONSE_NAME,
    RESPONSE_NOISE_LAYER,
    RESPONSE_NOISE_SD,
    SIMULATED_LAYERS,
    TEST_FILE,
    TRAIN_FILE,
)
from uqshap.data.rasters import load_raster_stack, normalize_layers, save_raster_stack, simulate_raster_stack
from uqshap.data.response import synthesize_response
from uqshap.data.sampling import extract_values, random_sample_points, regular_sample_points
from uqshap.reporting.figures import plot_raster_layers, plot_surface, save_figure
from uqshap.utils.logging import runtime_info, write_json


def _sha256_df(df: pd.DataFrame) -> str:
    h = hashlib.sha256()
    h.update("||".join(df.columns.astype(str).tolist()).encode("utf-8"))
    h.update("||".join(map(str, df.dtypes.tolist())).encode("utf-8"))
    row_hashes = pd.util.hash_pandas_object(df, index=True).to_numpy()
    h.update(row_hashes.tobytes())
    return h.hexdigest()


def _parse_coefficients(pairs) -> dict:
    out = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            raise SystemExit(f"--coef expects NAME=VALUE; got {pair!r}")
        try:
            out[name] = float(value)
        except ValueError:
            raise SystemExit(f"--coef value for {name} is not a number: {value!r}")
    return out


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Build raster predictors, the response surface and the random/regular sample tables."
    )
    parser.add_argument("--seed", type=int, default=DEFAULT_SEED, help="Seed for simulation and random sampling.")
    parser.add_argument(
        "--allow-any-seed",
        action="store_true",
        help="Allow seeds not listed in uqshap/config.py RANDOM_SEEDS (not recommended).",
    )
    parser.add_argument("--grid-rows", type=int, default=GRID_SHAPE[0])
    parser.add_argument("--grid-cols", type=int, default=GRID_SHAPE[1])
    parser.add_argument(
        "--raster-dir",
        type=Path,
        default=None,
        help="Optional directory of GeoTIFF predictors (*.tif); layers are named by file stem. "
        "Without it predictors are simulated.",
    )
    parser.add_argument(
        "--coef",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Response coefficient override; repeat per layer. Replaces the configured coefficients.",
    )
    parser.add_argument("--n-train", type=int, default=N_TRAIN, help="Random sample size (training set).")
    parser.add_argument("--n-test", type=int, default=N_TEST, help="Approximate regular sample size (test set).")
    parser.add_argument("--normalization", choices=["minmax", "zscore"], default=NORMALIZATION_METHOD)
    parser.add_argument("--processed-dir", type=Path, default=PROCESSED_DIR, help="Where sample tables are written.")
    parser.add_argument("--outdir", type=Path, default=OUTPUTS_DIR, help="Output directory (default: outputs/).")
    args = parser.parse_args()

    if (not args.allow_any_seed) and (args.seed not in RANDOM_SEEDS):
        raise SystemExit(f"--seed must be one of {RANDOM_SEEDS} unless --allow-any-seed is provided.")
    if args.n_train <= 0 or args.n_test <= 0:
        raise SystemExit("--n-train and --n-test must be positive integers.")

    if args.raster_dir is not None:
        tifs = sorted(args.raster_dir.glob("*.tif"))
        if not tifs:
            raise SystemExit(f"No *.tif rasters found in {args.raster_dir}")
        raw = load_raster_stack({p.stem: p for p in tifs})
    else:
        raw = simulate_raster_stack((args.grid_rows, args.grid_cols), SIMULATED_LAYERS, seed=args.seed)

    stack = normalize_layers(raw, method=args.normalization)

    coefficients = _parse_coefficients(args.coef) if args.coef else dict(RESPONSE_COEFFICIENTS)
    unknown = [name for name in coefficients if name not in stack.layers]
    if unknown:
        raise SystemExit(f"Response coefficients refer to layers that do not exist: {unknown}; layers: {stack.names}")

    response = synthesize_response(
        stack,
        coefficients,
        intercept=RESPONSE_INTERCEPT,
        noise_sd=RESPONSE_NOISE_SD,
        noise_layer=RESPONSE_NOISE_LAYER,
        seed=args.seed,
    )

    n_valid = int(stack.valid_mask().sum())
    if args.n_train > n_valid:
        raise SystemExit(f"--n-train={args.n_train} exceeds the {n_valid} valid raster cells.")

    train_points = random_sample_points(stack, args.n_train, seed=args.seed)
    test_points = regular_sample_points(stack, args.n_test)
    train = extract_values(stack, train_points, response, RESPONSE_NAME)
    test = extract_values(stack, test_points, response, RESPONSE_NAME)

    out_figures = args.outdir / "figures"
    out_logs = args.outdir / "logs"
    args.processed_dir.mkdir(parents=True, exist_ok=True)

    stack_path = args.processed_dir / RASTER_STACK_FILE
    train_path = args.processed_dir / TRAIN_FILE
    test_path = args.processed_dir / TEST_FILE
    save_raster_stack(stack.with_layer(RESPONSE_NAME, response), stack_path)
    train.to_parquet(train_path, index=False)
    test.to_parquet(test_path, index=False)

    save_figure(
        plot_raster_layers(stack, points={"train (random)": train, "test (regular)": test}),
        out_figures / "predictor_layers.png",
    )
    save_figure(
        plot_surface(response, stack.x, stack.y, "Synthetic response surface", RESPONSE_NAME),
        out_figures / "response_surface.png",
    )

    decisions = {
        "dataset_version": DATASET_VERSION,
        "seed": args.seed,
        "source": raw.metadata.get("source"),
        "grid_shape": list(stack.shape),
        "layers": stack.names,
        "normalization": args.normalization,
        "response": {
            "name": RESPONSE_NAME,
            "intercept": RESPONSE_INTERCEPT,
            "coefficients": coefficients,
            "noise_sd": RESPONSE_NOISE_SD,
            "noise_layer": RESPONSE_NOISE_LAYER,
            "deterministic": RESPONSE_NOISE_SD == 0,
        },
        "sampling": {
            "train": {"design": "random", "requested": args.n_train, "rows": len(train)},
            "test": {"design": "regular", "requested": args.n_test, "rows": len(test)},
            "valid_cells": n_valid,
        },
        "response_summary": {
            "train_mean": float(np.mean(train[RESPONSE_NAME])),
            "train_sd": float(np.std(train[RESPONSE_NAME], ddof=1)) if len(train) > 1 else None,
        },
        "artifacts": {
            "raster_stack_npz": str(stack_path),
            "train_parquet": str(train_path),
            "test_parquet": str(test_path),
            "train_sha256": _sha256_df(train),
            "test_sha256": _sha256_df(test),
        },
        "runtime": runtime_info(),
    }
    write_json(out_logs / "build_dataset.json", decisions)

    print(f"Wrote {stack_path}")
    print(f"Wrote {train_path}")
    print(f"Wrote {test_path}")
    print(f"Wrote {out_figures / 'predictor_layers.png'}")
    print(f"Wrote {out_figures / 'response_surface.png'}")
    print(f"Wrote {out_logs / 'build_dataset.json'}")


if __name__ == "__main__":
    main()
