import subprocess
import sys
from pathlib import Path

import numpy as np
import pandas as pd


REPO_ROOT = Path(__file__).resolve().parents[1]


def _run(script: str, *args: str) -> subprocess.CompletedProcess:
    cmd = [sys.executable, str(REPO_ROOT / "scripts" / script), *args]
    return subprocess.run(cmd, cwd=REPO_ROOT, capture_output=True, text=True)


def _write_noise_table(processed: Path) -> None:
    rng = np.random.default_rng(7)
    n = 120
    table = pd.DataFrame(
        {
            "x": rng.uniform(0, 10, n),
            "y": rng.uniform(0, 10, n),
            "row": np.arange(n),
            "col": np.arange(n),
            "noise_1": rng.normal(size=n),
            "noise_2": rng.normal(size=n),
            "noise_3": rng.normal(size=n),
            "response": rng.normal(size=n),
        }
    )
    processed.mkdir(parents=True, exist_ok=True)
    table.to_parquet(processed / "train_random.parquet", index=False)


def test_build_rejects_unlisted_seed(tmp_path: Path):
    res = _run(
        "01_build_dataset.py",
        "--seed", "1",
        "--processed-dir", str(tmp_path / "processed"),
        "--outdir", str(tmp_path / "outputs"),
    )
    assert res.returncode != 0
    assert "--seed must be one of" in res.stderr
    assert not (tmp_path / "processed" / "train_random.parquet").exists()


def test_screening_without_training_table_names_producer(tmp_path: Path):
    res = _run("02_screen_predictors.py", "--processed-dir", str(tmp_path / "missing"), "--outdir", str(tmp_path / "out"))
    assert res.returncode != 0
    assert "Run scripts/01_build_dataset.py first." in res.stderr


def test_grouping_without_screening_log_names_producer(tmp_path: Path):
    processed = tmp_path / "processed"
    _write_noise_table(processed)
    (processed / "test_regular.parquet").write_bytes((processed / "train_random.parquet").read_bytes())
    res = _run("04_group_predictors.py", "--processed-dir", str(processed), "--outdir", str(tmp_path / "out"))
    assert res.returncode != 0
    assert "Run scripts/02_screen_predictors.py first." in res.stderr


def test_screening_that_keeps_nothing_exits(tmp_path: Path):
    processed = tmp_path / "processed"
    outdir = tmp_path / "out"
    _write_noise_table(processed)
    res = _run("02_screen_predictors.py", "--alpha", "1e-6", "--processed-dir", str(processed), "--outdir", str(outdir))
    assert res.returncode != 0
    assert "retained no predictor" in res.stderr
    # the screening table and log are still written for inspection
    assert (outdir / "tables" / "hsic_screening.csv").exists()
    assert (outdir / "logs" / "screening.json").exists()
