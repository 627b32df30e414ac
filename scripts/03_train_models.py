from __future__ import annotations

import argparse
import os
import random
import sys
import tempfile
from pathlib import Path
from typing import Dict, List

import numpy as np
import pandas as pd

# Matplotlib must be configured before importing pyplot.
_mpl_cache_dir = Path(tempfile.gettempdir()) / "matplotlib"
_mpl_cache_dir.mkdir(parents=True, exist_ok=True)
os.environ.setdefault("MPLCONFIGDIR", str(_mpl_cache_dir))

import matplotlib

matplotlib.use("Agg")

import joblib


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from uqshap.config import (  # noqa: E402
    COORD_COLS,
    DEFAULT_SEED,
    EXPERIMENT_NAMESPACE,
    INTERVAL_LOWER,
    INTERVAL_UPPER,
    MAX_FEATURES,
    MEAN_MODEL_FILE,
    MIN_SAMPLES_LEAF,
    N_BOOT,
    N_ESTIMATORS,
    OUTPUTS_DIR,
    PROCESSED_DIR,
    QUANTILE_MODEL_FILE,
    QUANTILES,
    RANDOM_SEEDS,
    RESPONSE_NAME,
)
from uqshap.data.artifacts import load_sample_tables, load_selected_predictors  # noqa: E402
from uqshap.data.validate import assert_finite, assert_required_columns  # noqa: E402
from uqshap.evaluation.bootstrap import bootstrap_metric_draws, summarize_bootstrap_ci  # noqa: E402
from uqshap.evaluation.metrics import interval_metrics, pinball_losses, regression_metrics  # noqa: E402
from uqshap.models.forest import (  # noqa: E402
    build_quantile_forest,
    build_random_forest,
    predict_quantiles,
    quantile_label,
)
from uqshap.reporting.figures import plot_observed_vs_predicted, save_figure  # noqa: E402
from uqshap.utils.logging import runtime_info, sha256_file, write_json  # noqa: E402


def deterministic_run_id(seed: int, n_features: int) -> str:
    return f"{EXPERIMENT_NAMESPACE}_seed{seed}_p{n_features}"


def write_metrics_row(path: Path, rows: List[Dict[str, object]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    pd.DataFrame(rows).to_csv(path, index=False)


def main() -> None:
    parser = argparse.ArgumentParser(description="Train the mean random forest and the quantile random forest.")
    parser.add_argument("--seed", type=int, default=DEFAULT_SEED, help="Random seed for both forests.")
    parser.add_argument(
        "--allow-any-seed",
        action="store_true",
        help="Allow seeds not listed in uqshap/config.py RANDOM_SEEDS (not recommended).",
    )
    parser.add_argument("--n-estimators", type=int, default=N_ESTIMATORS)
    parser.add_argument("--min-samples-leaf", type=int, default=MIN_SAMPLES_LEAF)
    parser.add_argument(
        "--n_boot",
        type=int,
        default=N_BOOT,
        help="Number of bootstrap resamples for test-set confidence intervals.",
    )
    parser.add_argument("--processed-dir", type=Path, default=PROCESSED_DIR)
    parser.add_argument("--outdir", type=Path, default=OUTPUTS_DIR, help="Output directory (default: outputs/).")
    args = parser.parse_args()

    if (not args.allow_any_seed) and (args.seed not in RANDOM_SEEDS):
        raise SystemExit(f"--seed must be one of {RANDOM_SEEDS} unless --allow-any-seed is provided.")
    if args.n_estimators <= 0 or args.min_samples_leaf <= 0:
        raise SystemExit("--n-estimators and --min-samples-leaf must be positive integers.")
    if args.n_boot < 0:
        raise SystemExit("--n_boot must be >= 0.")

    random.seed(args.seed)
    np.random.seed(args.seed)

    train, test = load_sample_tables(args.processed_dir)
    features = load_selected_predictors(args.outdir)

    try:
        assert_required_columns(train, features + [RESPONSE_NAME])
        assert_required_columns(test, features + [RESPONSE_NAME])
        assert_finite(train, features + [RESPONSE_NAME])
        assert_finite(test, features + [RESPONSE_NAME])
    except ValueError as exc:
        raise SystemExit(str(exc))

    X_train, y_train = train[features], train[RESPONSE_NAME].to_numpy(dtype=float)
    X_test, y_test = test[features], test[RESPONSE_NAME].to_numpy(dtype=float)

    rf = build_random_forest(
        args.seed,
        n_estimators=args.n_estimators,
        min_samples_leaf=args.min_samples_leaf,
        max_features=MAX_FEATURES,
    )
    rf.fit(X_train, y_train)

    qrf = build_quantile_forest(
        QUANTILES,
        args.seed,
        n_estimators=args.n_estimators,
        min_samples_leaf=args.min_samples_leaf,
        max_features=MAX_FEATURES,
    )
    qrf.fit(X_train, y_train)

    out_tables = args.outdir / "tables"
    out_figures = args.outdir / "figures"
    out_models = args.outdir / "models"
    out_logs = args.outdir / "logs"
    for d in [out_tables, out_figures, out_models, out_logs]:
        d.mkdir(parents=True, exist_ok=True)

    mean_path = out_models / MEAN_MODEL_FILE
    qrf_path = out_models / QUANTILE_MODEL_FILE
    joblib.dump(rf, mean_path)
    joblib.dump(qrf, qrf_path)

    y_mean = rf.predict(X_test)
    q_frame = predict_quantiles(qrf, X_test, QUANTILES)
    lo_col, hi_col = quantile_label(INTERVAL_LOWER), quantile_label(INTERVAL_UPPER)
    median_col = quantile_label(0.5) if 0.5 in QUANTILES else None
    interval_alpha = 1.0 - (INTERVAL_UPPER - INTERVAL_LOWER)

    preds = test[COORD_COLS].copy()
    preds["observed"] = y_test
    preds["rf_mean"] = y_mean
    for col in q_frame.columns:
        preds[f"qrf_{col}"] = q_frame[col].to_numpy()
    preds["qrf_width"] = q_frame[hi_col].to_numpy() - q_frame[lo_col].to_numpy()
    preds_path = out_tables / "predictions_test.csv"
    preds.to_csv(preds_path, index=False)

    rows = [{"model": "rf_mean", **regression_metrics(y_test, y_mean)}]
    qrf_row: Dict[str, object] = {"model": "qrf"}
    if median_col is not None:
        qrf_row.update(regression_metrics(y_test, q_frame[median_col]))
    qrf_row.update(interval_metrics(y_test, q_frame[lo_col], q_frame[hi_col], interval_alpha))
    qrf_row.update(pinball_losses(y_test, q_frame, QUANTILES))
    rows.append(qrf_row)
    metrics_path = out_tables / "metrics_test.csv"
    write_metrics_row(metrics_path, rows)

    draws = bootstrap_metric_draws(
        y_true=y_test,
        y_pred=y_mean,
        n_boot=args.n_boot,
        seed=args.seed,
        lower=q_frame[lo_col].to_numpy(),
        upper=q_frame[hi_col].to_numpy(),
        alpha=interval_alpha,
    )
    draws_path = out_tables / f"bootstrap_draws_test_seed{args.seed}.csv"
    draws.to_csv(draws_path, index=False)
    ci = summarize_bootstrap_ci(draws)
    point = {**rows[0], **{k: v for k, v in qrf_row.items() if k in ("coverage", "mean_width", "interval_score")}}
    ci_rows = [
        {"metric": m, "estimate": point.get(m, np.nan), "ci_low": lo, "ci_high": hi}
        for m, (lo, hi) in ci.items()
    ]
    ci_path = out_tables / "metrics_with_ci.csv"
    pd.DataFrame(ci_rows).to_csv(ci_path, index=False)

    fig_path = out_figures / "observed_vs_predicted.png"
    save_figure(
        plot_observed_vs_predicted(
            y_test,
            y_mean,
            q_frame[lo_col],
            q_frame[hi_col],
            title=f"Test set: RF mean and qRF {lo_col}-{hi_col}",
        ),
        fig_path,
    )

    run_id = deterministic_run_id(args.seed, len(features))
    meta = {
        "run_id": run_id,
        "seed": args.seed,
        "features": features,
        "n_train": len(train),
        "n_test": len(test),
        "hyperparameters": {
            "n_estimators": args.n_estimators,
            "min_samples_leaf": args.min_samples_leaf,
            "max_features": MAX_FEATURES,
            "quantiles": list(QUANTILES),
            "interval": [INTERVAL_LOWER, INTERVAL_UPPER],
        },
        "metrics_test": rows,
        "metrics_ci": ci_rows,
        "artifacts": {
            "rf_mean_joblib": str(mean_path),
            "rf_mean_sha256": sha256_file(mean_path),
            "qrf_joblib": str(qrf_path),
            "qrf_sha256": sha256_file(qrf_path),
            "predictions_test_csv": str(preds_path),
            "metrics_test_csv": str(metrics_path),
            "metrics_with_ci_csv": str(ci_path),
            "bootstrap_draws_csv": str(draws_path),
            "figure": str(fig_path),
        },
        "runtime": {**runtime_info(), "n_boot_requested": int(args.n_boot)},
    }
    write_json(out_models / "forests.meta.json", meta)
    write_json(out_logs / f"run_{run_id}.json", meta)

    print(f"Wrote modeling artifacts to {args.outdir}/")


if __name__ == "__main__":
    main()
