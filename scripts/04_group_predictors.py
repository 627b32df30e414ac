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


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from uqshap.config import GROUPS_FILE, MAX_GROUPS, OUTPUTS_DIR, PAM_MAX_ITER, PROCESSED_DIR  # noqa: E402
from uqshap.data.artifacts import load_sample_tables, load_selected_predictors  # noqa: E402
from uqshap.grouping.pam import group_predictors  # noqa: E402
from uqshap.reporting.figures import plot_dependence_heatmap, plot_silhouette, save_figure  # noqa: E402
from uqshap.sensitivity.hsic import pairwise_dependence  # noqa: E402
from uqshap.utils.logging import runtime_info, write_json  # noqa: E402


def main() -> None:
    parser = argparse.ArgumentParser(description="Group dependent predictors with PAM on 1 - R2-HSIC.")
    parser.add_argument(
        "--n-groups",
        type=int,
        default=None,
        help="Fixed number of groups; by default chosen by the best mean silhouette width.",
    )
    parser.add_argument("--max-groups", type=int, default=MAX_GROUPS, help="Largest k tried by the silhouette search.")
    parser.add_argument("--processed-dir", type=Path, default=PROCESSED_DIR)
    parser.add_argument("--outdir", type=Path, default=OUTPUTS_DIR, help="Output directory (default: outputs/).")
    args = parser.parse_args()

    if args.n_groups is not None and args.n_groups <= 0:
        raise SystemExit("--n-groups must be a positive integer.")
    if args.max_groups < 2:
        raise SystemExit("--max-groups must be >= 2.")

    train, _ = load_sample_tables(args.processed_dir)
    features = load_selected_predictors(args.outdir)
    if args.n_groups is not None and args.n_groups > len(features):
        raise SystemExit(f"--n-groups={args.n_groups} exceeds the {len(features)} selected predictors.")

    dependence = pairwise_dependence(train[features])
    groups = group_predictors(dependence, n_groups=args.n_groups, max_groups=args.max_groups, max_iter=PAM_MAX_ITER)

    out_tables = args.outdir / "tables"
    out_figures = args.outdir / "figures"
    out_logs = args.outdir / "logs"
    out_tables.mkdir(parents=True, exist_ok=True)

    dep_path = out_tables / "dependence_r2hsic.csv"
    assign_path = out_tables / "predictor_groups.csv"
    sil_path = out_tables / "silhouette_by_k.csv"
    dependence.to_csv(dep_path, index_label="predictor")
    groups.assignment().to_csv(assign_path, index=False)
    groups.silhouette_table.to_csv(sil_path, index=False)

    save_figure(plot_dependence_heatmap(dependence, groups.groups), out_figures / "dependence_heatmap.png")
    figures = [str(out_figures / "dependence_heatmap.png")]
    if not groups.silhouette_table.empty:
        save_figure(plot_silhouette(groups.silhouette_table, groups.n_groups), out_figures / "silhouette_by_k.png")
        figures.append(str(out_figures / "silhouette_by_k.png"))

    payload = {
        **groups.to_dict(),
        "features": features,
        "n_groups": groups.n_groups,
        "selection": "fixed" if args.n_groups is not None else "silhouette",
        "dissimilarity": "1 - R2-HSIC",
        "artifacts": {
            "dependence_csv": str(dep_path),
            "assignment_csv": str(assign_path),
            "silhouette_csv": str(sil_path),
            "figures": figures,
        },
        "runtime": runtime_info(),
    }
    write_json(out_logs / GROUPS_FILE, payload)

    print(f"Wrote {dep_path}")
    print(f"Wrote {assign_path}")
    print(f"Wrote {sil_path}")
    for f in figures:
        print(f"Wrote {f}")
    print(f"Wrote {out_logs / GROUPS_FILE}")


if __name__ == "__main__":
    main()
