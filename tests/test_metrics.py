import numpy as np
import pandas as pd
import pytest

from uqshap.evaluation.bootstrap import METRIC_COLUMNS, bootstrap_metric_draws, summarize_bootstrap_ci
from uqshap.evaluation.metrics import interval_metrics, pinball_losses, regression_metrics


def test_regression_metrics_values():
    m = regression_metrics([1.0, 2.0, 3.0], [1.0, 2.0, 5.0])
    assert m["rmse"] == pytest.approx(np.sqrt(4.0 / 3.0))
    assert m["mae"] == pytest.approx(2.0 / 3.0)
    assert m["r2"] == pytest.approx(1.0 - 4.0 / 2.0)


def test_interval_metrics_coverage_width_and_score():
    y = np.array([0.0, 1.0, 5.0])
    lo = np.array([-1.0, 0.0, 0.0])
    hi = np.array([1.0, 2.0, 4.0])
    m = interval_metrics(y, lo, hi, alpha=0.1)
    assert m["coverage"] == pytest.approx(2.0 / 3.0)
    assert m["mean_width"] == pytest.approx(8.0 / 3.0)
    # third point misses by 1 -> penalty 2/0.1 * 1
    assert m["interval_score"] == pytest.approx((2.0 + 2.0 + 4.0 + 20.0) / 3.0)
    with pytest.raises(ValueError, match="same shape"):
        interval_metrics(y, lo[:2], hi, alpha=0.1)


def test_pinball_losses_per_level():
    y = np.array([0.0, 1.0, 2.0])
    frame = pd.DataFrame({"q10": [0.0, 1.0, 2.0], "q90": [1.0, 1.0, 1.0]})
    out = pinball_losses(y, frame, [0.1, 0.9])
    assert out["pinball_q10"] == pytest.approx(0.0)
    # residuals -1, 0, +1 at level 0.9: (0.1 * 1 + 0 + 0.9 * 1) / 3
    assert out["pinball_q90"] == pytest.approx(1.0 / 3.0)


def test_bootstrap_draws_and_ci():
    rng = np.random.default_rng(0)
    y = rng.normal(size=80)
    p = y + rng.normal(scale=0.3, size=80)
    draws = bootstrap_metric_draws(y_true=y, y_pred=p, n_boot=50, seed=1, lower=p - 1, upper=p + 1, alpha=0.1)
    assert draws.shape == (50, 1 + len(METRIC_COLUMNS))
    again = bootstrap_metric_draws(y_true=y, y_pred=p, n_boot=50, seed=1, lower=p - 1, upper=p + 1, alpha=0.1)
    pd.testing.assert_frame_equal(draws, again)

    ci = summarize_bootstrap_ci(draws)
    lo, hi = ci["rmse"]
    assert lo <= regression_metrics(y, p)["rmse"] <= hi
    assert ci["mean_width"] == pytest.approx((2.0, 2.0))


def test_bootstrap_without_interval_and_empty():
    draws = bootstrap_metric_draws(y_true=np.arange(5.0), y_pred=np.arange(5.0), n_boot=3, seed=2)
    assert draws["coverage"].isna().all()
    empty = bootstrap_metric_draws(y_true=np.arange(5.0), y_pred=np.arange(5.0), n_boot=0, seed=2)
    assert empty.empty
    assert all(np.isnan(v).all() for v in summarize_bootstrap_ci(empty).values())
