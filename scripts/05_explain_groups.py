from __future__ import annotations

import argparse
import os
import sys
import tempfile
from pathlib import Path
from typing import Dict

import numpy as np
import pandas as pd

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
    ADDITIVITY_TOL,
    COORD_COLS,
    DEFAULT_SEED,
    INTERVAL_LOWER,
    INTERVAL_UPPER,
    MEAN_MODEL_FILE,
    N_BACKGROUND,
    OUTPUTS_DIR,
    PROCESSED_DIR,
    QUANTILE_MODEL_FILE,
    QUANTILES,
    SHAPLEY_BATCH_SIZE,
)
from uqshap.data.artifacts import load_predictor_groups, load_sample_tables, require  # noqa: E402
from uqshap.explain.feature_shap import aggregate_by_group, tree_shap_values  # noqa: E402
from uqshap.explain.group_shapley import GroupShapleyExplainer, GroupShapleyResult  # noqa: E402
from uqshap.models.forest import IntervalWidth, QuantileLevel  # noqa: E402
from uqshap.reporting.figures import (  # noqa: E402
    plot_dominant_group_map,
    plot_group_importance,
    plot_group_shapley_maps,
    save_figure,
)
from uqshap.utils.logging import runtime_info, write_json  # noqa: E402


def draw_background(train: pd.DataFrame, features, n_background: int, seed: int) -> pd.DataFrame:
    if n_background >= len(train):
        return train[features].reset_index(drop=True)
    return train[features].sample(n=n_background, random_state=seed).reset_index(drop=True)


def compare_with_tree_shap(exact: GroupShapleyResult, aggregated: pd.DataFrame) -> pd.DataFrame:
    rows = []
    for g in exact.values.columns:
        a = exact.values[g].to_numpy(dtype=float)
        b = aggregated[g].to_numpy(dtype=float)
        corr = float(np.corrcoef(a, b)[0, 1]) if a.size > 1 and a.std() > 0 and b.std() > 0 else np.nan
        rows.append(
            {
                "group": g,
                "exact_mean_abs": float(np.mean(np.abs(a))),
                "treeshap_sum_mean_abs": float(np.mean(np.abs(b))),
                "max_abs_difference": float(np.max(np.abs(a - b))) if a.size else np.nan,
                "pearson_r": corr,
            }
        )
    return pd.DataFrame(rows)


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Decompose RF mean predictions and qRF uncertainty into group Shapley values."
    )
    parser.add_argument("--seed", type=int, default=DEFAULT_SEED, help="Seed for the background sample.")
    parser.add_argument("--n-background", type=int, default=N_BACKGROUND, help="Background sample size (train set).")
    parser.add_argument(
        "--n-explain",
        type=int,
        default=None,
        help="Optional: explain only the first N test points (for quick runs).",
    )
    parser.add_argument("--batch-size", type=int, default=SHAPLEY_BATCH_SIZE, help="Rows per prediction batch.")
    parser.add_argument("--skip-treeshap", action="store_true", help="Skip the per-feature TreeSHAP comparison.")
    parser.add_argument("--processed-dir", type=Path, default=PROCESSED_DIR)
    parser.add_argument("--outdir", type=Path, default=OUTPUTS_DIR, help="Output directory (default: outputs/).")
    args = parser.parse_args()

    if args.n_background <= 0:
        raise SystemExit("--n-background must be a positive integer.")
    if args.n_explain is not None and args.n_explain <= 0:
        raise SystemExit("--n-explain must be a positive integer.")
    if args.batch_size <= 0:
        raise SystemExit("--batch-size must be a positive integer.")

    out_tables = args.outdir / "tables"
    out_figures = args.outdir / "figures"
    out_models = args.outdir / "models"
    out_logs = args.outdir / "logs"
    out_tables.mkdir(parents=True, exist_ok=True)

    train, test = load_sample_tables(args.processed_dir)
    groups = load_predictor_groups(args.outdir)
    rf = joblib.load(require(out_models / MEAN_MODEL_FILE, "03_train_models.py"))
    qrf = joblib.load(require(out_models / QUANTILE_MODEL_FILE, "03_train_models.py"))

    features = [m for members in groups.groups.values() for m in members]
    trained_on = list(getattr(rf, "feature_names_in_", features))
    if sorted(trained_on) != sorted(features):
        raise SystemExit(
            f"Groups cover {sorted(features)} but the forests were trained on {sorted(trained_on)}; "
            "rerun scripts/03_train_models.py and scripts/04_group_predictors.py."
        )
    features = trained_on

    background = draw_background(train, features, args.n_background, args.seed)
    explain = test if args.n_explain is None else test.head(args.n_explain)
    X = explain[features]
    points = explain[COORD_COLS].reset_index(drop=True)

    targets = {"mean": rf, "uncertainty": IntervalWidth(qrf, QUANTILES, INTERVAL_LOWER, INTERVAL_UPPER)}
    if 0.5 in QUANTILES:
        targets["median"] = QuantileLevel(qrf, QUANTILES, 0.5)

    results: Dict[str, GroupShapleyResult] = {}
    summary_rows = []
    artifacts: Dict[str, str] = {}
    for name, model in targets.items():
        explainer = GroupShapleyExplainer(model, background, groups.groups, batch_size=args.batch_size)
        result = explainer.explain(X)
        gap = result.additivity_gap()
        scale = max(1.0, float(np.max(np.abs(result.prediction.to_numpy()))) if len(result.prediction) else 1.0)
        if gap > ADDITIVITY_TOL * scale:
            raise RuntimeError(f"Group Shapley values for {name} are not additive (max gap {gap:.3g}).")
        results[name] = result

        frame = result.to_frame().reset_index(drop=True)
        frame = pd.concat([points, frame], axis=1)
        path = out_tables / f"group_shapley_{name}.csv"
        frame.to_csv(path, index=False)
        artifacts[f"group_shapley_{name}_csv"] = str(path)

        share = result.share()
        for g, v in result.mean_abs().items():
            summary_rows.append(
                {
                    "target": name,
                    "group": g,
                    "members": ";".join(groups.groups[g]),
                    "mean_abs_phi": float(v),
                    "share": float(share[g]),
                    "base_value": result.base_value,
                    "additivity_gap": gap,
                }
            )

        values = result.values.reset_index(drop=True)
        dominant = result.dominant_group().reset_index(drop=True)
        map_path = out_figures / f"group_shapley_map_{name}.png"
        dom_path = out_figures / f"dominant_group_{name}.png"
        save_figure(plot_group_shapley_maps(points, values, f"Group Shapley values: {name}"), map_path)
        save_figure(plot_dominant_group_map(points, dominant, f"Dominant group: {name}"), dom_path)
        artifacts[f"map_{name}"] = str(map_path)
        artifacts[f"dominant_{name}"] = str(dom_path)

    importance_path = out_tables / "group_importance.csv"
    pd.DataFrame(summary_rows).to_csv(importance_path, index=False)
    artifacts["group_importance_csv"] = str(importance_path)

    bars_path = out_figures / "group_importance.png"
    save_figure(
        plot_group_importance({name: r.mean_abs() for name, r in results.items()}, "Mean |group Shapley value|"),
        bars_path,
    )
    artifacts["group_importance_png"] = str(bars_path)

    if not args.skip_treeshap:
        shap_values, _ = tree_shap_values(rf, X, background)
        aggregated = aggregate_by_group(shap_values, groups.groups)
        comparison = compare_with_tree_shap(results["mean"], aggregated)
        cmp_path = out_tables / "treeshap_group_comparison.csv"
        comparison.to_csv(cmp_path, index=False)
        artifacts["treeshap_comparison_csv"] = str(cmp_path)

    log = {
        "groups": groups.groups,
        "features": features,
        "targets": {
            "mean": "random forest mean prediction",
            "uncertainty": f"qRF interval width q{INTERVAL_UPPER} - q{INTERVAL_LOWER}",
            "median": "qRF median" if "median" in targets else None,
        },
        "value_function": "interventional: mean over background of f(x_S, b_-S)",
        "n_background": len(background),
        "n_explained": len(X),
        "base_values": {name: r.base_value for name, r in results.items()},
        "additivity_gaps": {name: r.additivity_gap() for name, r in results.items()},
        "importance": {name: r.mean_abs().to_dict() for name, r in results.items()},
        "artifacts": artifacts,
        "runtime": runtime_info(),
    }
    write_json(out_logs / "explain_groups.json", log)

    for path in artifacts.values():
        print(f"Wrote {path}")
    print(f"Wrote {out_logs / 'explain_groups.json'}")


if __name__ == "__main__":
    main()
