from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from uqshap.data.rasters import RasterStack


def save_figure(fig, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(path, dpi=300, bbox_inches="tight")
    plt.close(fig)


def _extent(x: np.ndarray, y: np.ndarray) -> list:
    dx = float(abs(x[1] - x[0])) if x.size > 1 else 1.0
    dy = float(abs(y[1] - y[0])) if y.size > 1 else 1.0
    return [x.min() - dx / 2, x.max() + dx / 2, y.min() - dy / 2, y.max() + dy / 2]


def plot_raster_layers(
    stack: RasterStack,
    points: Optional[Mapping[str, pd.DataFrame]] = None,
    ncols: int = 3,
):
    names = stack.names
    nrows = int(np.ceil(len(names) / ncols))
    fig, axes = plt.subplots(nrows, ncols, figsize=(4 * ncols, 3.6 * nrows), squeeze=False)
    extent = _extent(stack.x, stack.y)
    markers = ["o", "s", "^", "D"]
    for ax, name in zip(axes.ravel(), names):
        im = ax.imshow(stack.layers[name], extent=extent, cmap="viridis", origin="upper")
        fig.colorbar(im, ax=ax, shrink=0.8)
        for i, (label, pts) in enumerate((points or {}).items()):
            ax.scatter(pts["x"], pts["y"], s=4, marker=markers[i % len(markers)], c="white", edgecolors="black",
                       linewidths=0.2, label=label)
        ax.set_title(name)
        ax.set_xticks([])
        ax.set_yticks([])
    for ax in axes.ravel()[len(names):]:
        ax.axis("off")
    if points:
        axes.ravel()[0].legend(loc="lower left", fontsize=7)
    fig.tight_layout()
    return fig


def plot_surface(values: np.ndarray, x: np.ndarray, y: np.ndarray, title: str, label: str = ""):
    fig, ax = plt.subplots(figsize=(6, 5))
    im = ax.imshow(values, extent=_extent(x, y), cmap="magma", origin="upper")
    cb = fig.colorbar(im, ax=ax)
    cb.set_label(label)
    ax.set_title(title)
    ax.set_xlabel("x")
    ax.set_ylabel("y")
    fig.tight_layout()
    return fig


def plot_hsic_screening(table: pd.DataFrame, alpha: float):
    df = table.sort_values("r2_hsic", kind="mergesort")
    colors = ["tab:blue" if s else "lightgray" for s in df["selected"]]
    fig, ax = plt.subplots(figsize=(7, 0.4 * len(df) + 1.5))
    ax.barh(df["predictor"], df["r2_hsic"], color=colors)
    for yi, (r2, p) in enumerate(zip(df["r2_hsic"], df["p_value"])):
        ax.text(r2, yi, f"  p={p:.3g}", va="center", fontsize=8)
    ax.set_xlabel("R2-HSIC with response")
    ax.set_title(f"HSIC screening (kept if p <= {alpha})")
    ax.set_xlim(0, max(1.0, float(df["r2_hsic"].max()) * 1.3))
    fig.tight_layout()
    return fig


def plot_dependence_heatmap(dependence: pd.DataFrame, groups: Optional[Mapping[str, Sequence[str]]] = None):
    order = dependence.columns.tolist()
    if groups:
        order = [m for members in groups.values() for m in members]
    mat = dependence.loc[order, order].to_numpy(dtype=float)
    fig, ax = plt.subplots(figsize=(0.6 * len(order) + 3, 0.6 * len(order) + 2.5))
    im = ax.imshow(mat, cmap="viridis", vmin=0, vmax=1)
    fig.colorbar(im, ax=ax, label="R2-HSIC")
    ax.set_xticks(range(len(order)))
    ax.set_xticklabels(order, rotation=60, ha="right")
    ax.set_yticks(range(len(order)))
    ax.set_yticklabels(order)
    if groups:
        edge = -0.5
        for members in groups.values():
            size = len(members)
            ax.add_patch(plt.Rectangle((edge, edge), size, size, fill=False, edgecolor="red", linewidth=1.5))
            edge += size
    ax.set_title("Pairwise predictor dependence")
    fig.tight_layout()
    return fig


def plot_silhouette(table: pd.DataFrame, chosen_k: int):
    fig, ax = plt.subplots(figsize=(6, 4))
    ax.plot(table["k"], table["silhouette"], marker="o", linewidth=2)
    ax.axvline(chosen_k, color="gray", linestyle="--", linewidth=1, label=f"k={chosen_k}")
    ax.set_xlabel("Number of groups (k)")
    ax.set_ylabel("Mean silhouette width")
    ax.set_title("PAM grouping: silhouette by k")
    ax.legend()
    fig.tight_layout()
    return fig


def plot_observed_vs_predicted(y_true, y_mean, lower=None, upper=None, title: str = ""):
    y = np.asarray(y_true, dtype=float)
    p = np.asarray(y_mean, dtype=float)
    fig, ax = plt.subplots(figsize=(6, 5))
    if lower is not None and upper is not None:
        lo = np.asarray(lower, dtype=float)
        hi = np.asarray(upper, dtype=float)
        ax.vlines(y, lo, hi, color="tab:orange", alpha=0.4, linewidth=1, label="qRF interval")
    ax.scatter(y, p, s=12, color="tab:blue", label="RF mean")
    lim = [float(min(y.min(), p.min())), float(max(y.max(), p.max()))]
    ax.plot(lim, lim, "--", color="gray", linewidth=1)
    ax.set_xlabel("Observed")
    ax.set_ylabel("Predicted")
    ax.set_title(title)
    ax.legend()
    fig.tight_layout()
    return fig


def plot_group_importance(importance: Dict[str, pd.Series], title: str = "Group Shapley importance"):
    frame = pd.DataFrame(importance).fillna(0.0)
    fig, axes = plt.subplots(1, frame.shape[1], figsize=(4.5 * frame.shape[1], 0.45 * len(frame) + 2), squeeze=False)
    for ax, col in zip(axes.ravel(), frame.columns):
        s = frame[col].sort_values(kind="mergesort")
        ax.barh(s.index.astype(str), s.to_numpy(), color="tab:green")
        ax.set_title(col)
        ax.set_xlabel("mean |phi|")
    fig.suptitle(title)
    fig.tight_layout()
    return fig


def plot_dominant_group_map(points: pd.DataFrame, dominant: pd.Series, title: str):
    labels = sorted(dominant.unique().tolist())
    cmap = plt.get_cmap("tab10")
    fig, ax = plt.subplots(figsize=(6, 5))
    for i, label in enumerate(labels):
        mask = (dominant == label).to_numpy()
        ax.scatter(points["x"].to_numpy()[mask], points["y"].to_numpy()[mask], s=30, color=cmap(i % 10), label=label)
    ax.set_aspect("equal")
    ax.set_xlabel("x")
    ax.set_ylabel("y")
    ax.set_title(title)
    ax.legend(title="Dominant group", fontsize=8)
    fig.tight_layout()
    return fig


def plot_group_shapley_maps(points: pd.DataFrame, values: pd.DataFrame, title: str, ncols: int = 3):
    names = values.columns.tolist()
    nrows = int(np.ceil(len(names) / ncols))
    fig, axes = plt.subplots(nrows, ncols, figsize=(4 * ncols, 3.6 * nrows), squeeze=False)
    vmax = float(np.nanmax(np.abs(values.to_numpy()))) if values.size else 1.0
    vmax = vmax if vmax > 0 else 1.0
    for ax, name in zip(axes.ravel(), names):
        sc = ax.scatter(points["x"], points["y"], c=values[name], cmap="RdBu_r", vmin=-vmax, vmax=vmax, s=25)
        fig.colorbar(sc, ax=ax, shrink=0.8)
        ax.set_title(name)
        ax.set_aspect("equal")
        ax.set_xticks([])
        ax.set_yticks([])
    for ax in axes.ravel()[len(names):]:
        ax.axis("off")
    fig.suptitle(title)
    fig.tight_layout()
    return fig
