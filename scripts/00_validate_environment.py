import argparse
import platform
import sys

from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from uqshap.config import LOGS_DIR, PROCESSED_DIR, RAW_DIR, TEST_FILE, TRAIN_FILE
from uqshap.utils.logging import package_versions, write_json

REQUIRED_PACKAGES = ("numpy", "pandas", "scipy", "scikit-learn", "sklearn-quantile", "shap", "matplotlib", "joblib", "pyarrow")


def main() -> None:
    parser = argparse.ArgumentParser(description="Record interpreter, package versions and input availability.")
    parser.add_argument("--logs-dir", type=Path, default=LOGS_DIR)
    args = parser.parse_args()

    versions = package_versions()
    missing = [pkg for pkg in REQUIRED_PACKAGES if versions.get(pkg) is None]
    info = {
        "python_version": sys.version,
        "platform": platform.platform(),
        "packages": versions,
        "missing_required_packages": missing,
        "raw_rasters": sorted(str(p) for p in RAW_DIR.glob("*.tif")) if RAW_DIR.exists() else [],
        "train_table_exists": (PROCESSED_DIR / TRAIN_FILE).exists(),
        "test_table_exists": (PROCESSED_DIR / TEST_FILE).exists(),
    }
    out_path = args.logs_dir / "environment_check.json"
    write_json(out_path, info)
    print(f"Wrote {out_path}")
    if missing:
        raise SystemExit(f"Missing required packages: {missing}")


if __name__ == "__main__":
    main()
