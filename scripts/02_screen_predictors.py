from __future__ import annotations

import argparse
import os
import sys
import tempfile
from pathlib import Path

_mpl_cache_dir = Path(tempfile.gettempdir()) / "matplotlib"
_mpl_cache_dir.mkdir(parents=True, exist_ok=True)
os.environ.setdefault("MPLCONFIGDIR", str(_mpl_cache_dir))

import matplotlib

matplotlib.use("Agg")

import pandas as pd


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from uqshap.config import (  # noqa: E402
    COORD_COLS,
    DEFAULT_SEED,
    HSIC_ALPHA,
    HSIC_PERMUTATIONS,
    HSIC_TEST,
    OUTPUTS_DIR,
    PROCESSED_DIR,
    RESPONSE_NAME,
    SCREENING_FILE,
    TRAIN_FILE,
)
from uqshap.data.artifacts import require  # noqa: E402
from uqshap.data.validate import assert_finite  # noqa: E402
from uqshap.reporting.figures import plot_hsic_screening, save_figure  # noqa: E402
from uqshap.sensitivity.hsic import screen_predictors  # noqa: E402
from uqshap.utils.logging import runtime_info, write_json  # noqa: E402


def predictor_columns(df: pd.DataFrame) -> list:
    return [c for c in df.columns.astype(str).tolist() if c not in COORD_COLS and c != RESPONSE_NAME]


def main() -> None:
    parser = argparse.ArgumentParser(description="HSIC sensitivity screening of predictors against the response.")
    parser.add_argument("--alpha", type=float, default=HSIC_ALPHA, help="Significance level of the HSIC test.")
    parser.add_argument("--test", choices=["gamma", "permutation"], default=HSIC_TEST)
    parser.add_argument("--n-permutations", type=int, default=HSIC_PERMUTATIONS)
    parser.add_argument("--seed", type=int, default=DEFAULT_SEED, help="Seed for the permutation test.")
    parser.add_argument("--processed-dir", type=Path, default=PROCESSED_DIR)
    parser.add_argument("--outdir", type=Path, default=OUTPUTS_DIR, help="Output directory (default: outputs/).")
    args = parser.parse_args()

    if not 0.0 < args.alpha < 1.0:
        raise SystemExit("--alpha must lie in (0, 1).")
    if args.n_permutations <= 0:
        raise SystemExit("--n-permutations must be a positive integer.")

    train = pd.read_parquet(require(args.processed_dir / TRAIN_FILE, "01_build_dataset.py"))

    predictors = predictor_columns(train)
    try:
        assert_finite(train, predictors + [RESPONSE_NAME])
    except ValueError as exc:
        raise SystemExit(str(exc))

    table = screen_predictors(
        train[predictors],
        train[RESPONSE_NAME].to_numpy(dtype=float),
        alpha=args.alpha,
        test=args.test,
        n_permutations=args.n_permutations,
        seed=args.seed,
    )
    selected = table.loc[table["selected"], "predictor"].tolist()
    # Keep the original column order for downstream steps.
    selected = [p for p in predictors if p in selected]
    discarded = [p for p in predictors if p not in selected]

    out_tables = args.outdir / "tables"
    out_figures = args.outdir / "figures"
    out_logs = args.outdir / "logs"
    out_tables.mkdir(parents=True, exist_ok=True)

    table_path = out_tables / "hsic_screening.csv"
    table.to_csv(table_path, index=False)
    save_figure(plot_hsic_screening(table, args.alpha), out_figures / "hsic_screening.png")

    log = {
        "alpha": args.alpha,
        "test": args.test,
        "n_permutations": args.n_permutations if args.test == "permutation" else None,
        "n_train": len(train),
        "candidate_predictors": predictors,
        "selected_predictors": selected,
        "discarded_predictors": discarded,
        "artifacts": {"screening_csv": str(table_path), "figure": str(out_figures / "hsic_screening.png")},
        "runtime": runtime_info(),
    }
    write_json(out_logs / SCREENING_FILE, log)

    print(f"Wrote {table_path}")
    print(f"Wrote {out_figures / 'hsic_screening.png'}")
    print(f"Wrote {out_logs / SCREENING_FILE}")

    if not selected:
        raise SystemExit("HSIC screening retained no predictor; nothing to model.")
    print(f"Selected predictors ({len(selected)}): {', '.join(selected)}")


if __name__ == "__main__":
    main()
