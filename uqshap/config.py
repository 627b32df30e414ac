from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]

DATA_DIR = PROJECT_ROOT / "data"
RAW_DIR = DATA_DIR / "raw"
PROCESSED_DIR = DATA_DIR / "processed"

OUTPUTS_DIR = PROJECT_ROOT / "outputs"
FIGURES_DIR = OUTPUTS_DIR / "figures"
TABLES_DIR = OUTPUTS_DIR / "tables"
MODELS_DIR = OUTPUTS_DIR / "models"
LOGS_DIR = OUTPUTS_DIR / "logs"

# Processed artifacts handed from one pipeline step to the next
RASTER_STACK_FILE = "raster_stack.npz"
TRAIN_FILE = "train_random.parquet"
TEST_FILE = "test_regular.parquet"
SCREENING_FILE = "screening.json"  # under outputs/logs
GROUPS_FILE = "predictor_groups.json"  # under outputs/logs
MEAN_MODEL_FILE = "rf_mean.joblib"  # under outputs/models
QUANTILE_MODEL_FILE = "qrf.joblib"  # under outputs/models

# Non-predictor columns of the sample tables
COORD_COLS = ["x", "y", "row", "col"]

# Dataset and experiment identifiers (used in outputs/ metadata)
DATASET_VERSION = "simulated_grid_v1"
EXPERIMENT_NAMESPACE = "qrf_group_shap_v1"

# Frozen reproducibility protocol
RANDOM_SEEDS = [2026, 2027, 2028]
DEFAULT_SEED = 2026

# Step 1 / simulated predictor layers.
#
# Each layer is a smoothed Gaussian random field. "sigma" is the smoothing
# range in cells; "parents" mixes in already-built layers so that groups of
# correlated predictors exist by construction.
GRID_SHAPE = (100, 100)
SIMULATED_LAYERS = [
    {"name": "elevation", "sigma": 12.0, "parents": {}},
    {"name": "slope", "sigma": 4.0, "parents": {"elevation": 0.8}},
    {"name": "temperature", "sigma": 10.0, "parents": {"elevation": -0.9}},
    {"name": "precipitation", "sigma": 15.0, "parents": {}},
    {"name": "humidity", "sigma": 6.0, "parents": {"precipitation": 0.85}},
    {"name": "soil_depth", "sigma": 5.0, "parents": {}},
    {"name": "vegetation", "sigma": 5.0, "parents": {"precipitation": 0.5, "soil_depth": 0.6}},
    {"name": "noise_a", "sigma": 3.0, "parents": {}},
    {"name": "noise_b", "sigma": 8.0, "parents": {}},
]
NORMALIZATION_METHOD = "minmax"  # choices: minmax, zscore

# Step 1 / response surface: intercept + sum(coef * normalized layer).
# Layers absent from the mapping (noise_a, noise_b) carry no signal.
RESPONSE_COEFFICIENTS = {
    "elevation": 2.0,
    "temperature": -1.5,
    "precipitation": 1.0,
    "humidity": 0.5,
    "soil_depth": 0.75,
    "vegetation": 1.25,
}
RESPONSE_INTERCEPT = 0.0
RESPONSE_NAME = "response"
RESPONSE_NOISE_SD = 0.0
RESPONSE_NOISE_LAYER = None

# Step 1 / sampling: random points train, regular points test.
N_TRAIN = 500
N_TEST = 100

# Step 2 / HSIC screening
HSIC_ALPHA = 0.05
HSIC_TEST = "gamma"  # choices: gamma, permutation
HSIC_PERMUTATIONS = 200

# Step 3 / forests
N_ESTIMATORS = 500
MIN_SAMPLES_LEAF = 5
MAX_FEATURES = 1.0 / 3.0
QUANTILES = (0.05, 0.5, 0.95)
INTERVAL_LOWER = 0.05
INTERVAL_UPPER = 0.95
N_BOOT = 500

# Step 4 / grouping
MAX_GROUPS = 6
PAM_MAX_ITER = 100

# Step 5 / group Shapley attribution
N_BACKGROUND = 100
SHAPLEY_BATCH_SIZE = 20000
ADDITIVITY_TOL = 1e-6
