from pathlib import Path
from typing import List, Tuple

import pandas as pd

from uqshap.config import GROUPS_FILE, SCREENING_FILE, TEST_FILE, TRAIN_FILE
from uqshap.grouping.pam import PredictorGroups
from uqshap.utils.logging import read_json


def require(path: Path, producer: str) -> Path:
    if not path.exists():
        raise SystemExit(f"Input not found: {path}. Run scripts/{producer} first.")
    return path


def load_sample_tables(processed_dir: Path) -> Tuple[pd.DataFrame, pd.DataFrame]:
    train = pd.read_parquet(require(processed_dir / TRAIN_FILE, "01_build_dataset.py"))
    test = pd.read_parquet(require(processed_dir / TEST_FILE, "01_build_dataset.py"))
    return train, test


def load_selected_predictors(outdir: Path) -> List[str]:
    payload = read_json(require(outdir / "logs" / SCREENING_FILE, "02_screen_predictors.py"))
    selected = list(payload.get("selected_predictors") or [])
    if not selected:
        raise SystemExit("Screening log lists no selected predictors; rerun scripts/02_screen_predictors.py.")
    return selected


def load_predictor_groups(outdir: Path) -> PredictorGroups:
    payload = read_json(require(outdir / "logs" / GROUPS_FILE, "04_group_predictors.py"))
    return PredictorGroups.from_dict(payload)
