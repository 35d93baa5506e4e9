"""
Configuration constants for the match outcome tuning walkthrough
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from contextlib import contextmanager
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from pathlib import Path
from types import MappingProxyType
from typing import Any, Generator, Literal


def load_json(path: Path | str) -> dict[str, Any]:
    """
    Load JSON file with consistent error handling.

    Args:
        path: Path to JSON file

    Returns:
        Parsed JSON as dict

    Raises:
        FileNotFoundError: If file doesn't exist
        json.JSONDecodeError: If file is not valid JSON
    """
    path = Path(path)
    with open(path) as f:
        return json.load(f)


# Random seed for reproducibility
RANDOM_STATE = 42

# =============================================================================
# DATASET
# =============================================================================
# Remote CSV location. Unset by default; pass --source or export the variable.
DATA_URL: str | None = os.environ.get('MATCHTUNE_DATA_URL') or None

# One row per match, per-team aggregates prefixed by team
TARGET_COLUMN = 'blueWins'
ID_COLUMN = 'gameId'
TEAM_PREFIXES = ('blue', 'red')

# Appended to a stat name for the first-minus-second team column
DIFF_SUFFIX = 'Diff'

# =============================================================================
# RESAMPLING AND TUNING
# =============================================================================
# Three quarters of the matches go to training
TEST_SIZE = 0.25

CV_FOLDS = 5

# Boosting rounds are fixed; only the six tree/sampling parameters are tuned
N_TREES = 1000

# Number of candidates in a space-filling grid
GRID_SIZE = 30

GridMethod = Literal['latin_hypercube', 'regular']
GRID_METHODS = ('latin_hypercube', 'regular')

# Levels per parameter for regular grids (levels ** 6 candidates)
REGULAR_GRID_LEVELS = 3

TuningMethod = Literal['grid', 'optuna']

# Metrics computed for every candidate; log_loss is lower-is-better
TUNING_METRICS = ('accuracy', 'roc_auc', 'log_loss')
PRIMARY_METRIC = 'roc_auc'

# Libraries to suppress verbose logging
_SUPPRESS_LIBRARIES = (
    ('mlflow', logging.WARNING),
    ('alembic', logging.WARNING),
    ('optuna', logging.WARNING),
    ('matplotlib', logging.WARNING),
)


def _apply_log_suppression() -> None:
    """Apply log level suppression to noisy libraries."""
    for lib_name, level in _SUPPRESS_LIBRARIES:
        logging.getLogger(lib_name).setLevel(level)


def setup_logging(
    level: int = logging.INFO,
    force: bool = False,
    json_format: bool = False,
    log_file: Path | None = None,
) -> logging.Logger:
    """
    Configure the 'matchtune' logger.

    Repeated calls are no-ops unless force=True, which replaces the
    existing handlers.

    Args:
        level: Logging level (default: INFO)
        force: Replace handlers installed by an earlier call
        json_format: One JSON object per line (see RunEvent) instead of
            '[LEVEL] message'
        log_file: Also write records to this file, in the same format

    Returns:
        Configured 'matchtune' logger instance
    """
    logger = logging.getLogger('matchtune')

    if force or not logger.handlers:
        for handler in logger.handlers[:]:
            logger.removeHandler(handler)
            handler.close()

        logger.setLevel(level)

        if json_format:
            formatter = RunEventFormatter()
        else:
            formatter = logging.Formatter('[%(levelname)s] %(message)s')

        handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
        if log_file is not None:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(log_file))

        for handler in handlers:
            handler.setLevel(level)
            handler.setFormatter(formatter)
            logger.addHandler(handler)

        # Avoid duplicate messages through the root logger
        logger.propagate = False

    _apply_log_suppression()
    return logger


# =============================================================================
# STRUCTURED RUN EVENTS
# =============================================================================
# Attributes attached to records through `extra=` by the helpers below
EVENT_FIELDS = ('step', 'status', 'duration_ms', 'stats', 'scores', 'context')

StepStatus = Literal['started', 'completed', 'failed']


@dataclass
class RunEvent:
    """One JSON log line; empty fields are left out."""
    timestamp: str
    level: str
    message: str
    source: str
    step: str | None = None
    status: str | None = None
    duration_ms: float | None = None
    stats: dict[str, Any] = field(default_factory=dict)
    scores: dict[str, float] = field(default_factory=dict)
    context: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_record(cls, record: logging.LogRecord) -> RunEvent:
        event = cls(
            timestamp=datetime.fromtimestamp(record.created, timezone.utc).isoformat(timespec='milliseconds'),
            level=record.levelname,
            message=record.getMessage(),
            source=f"{record.module}:{record.funcName}:{record.lineno}",
        )
        for name in EVENT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                setattr(event, name, value)
        return event

    def to_json(self) -> str:
        data = {k: v for k, v in asdict(self).items() if v is not None and v != {}}
        return json.dumps(data, default=str)


class RunEventFormatter(logging.Formatter):
    """Render records as RunEvent JSON lines."""

    def format(self, record: logging.LogRecord) -> str:
        event = RunEvent.from_record(record)
        if record.exc_info:
            event.context = {**event.context, 'exception': self.formatException(record.exc_info)}
        return event.to_json()


def log_step(
    logger: logging.Logger,
    step: str,
    status: StepStatus,
    duration_ms: float | None = None,
    stats: dict[str, Any] | None = None,
    level: int = logging.INFO,
) -> None:
    """Log a pipeline step transition (prepare, explore, tune, finalize)."""
    message = f"Step {step} {status}"
    if duration_ms is not None:
        message += f" in {duration_ms / 1000:.1f}s"
    logger.log(level, message, extra={
        'step': step, 'status': status, 'duration_ms': duration_ms, 'stats': stats or {},
    })


@contextmanager
def pipeline_step(logger: logging.Logger, step: str) -> Generator[dict[str, Any], None, None]:
    """
    Bracket a pipeline step with 'started' and 'completed' or 'failed' events.

    Yields a dict; whatever the step puts in it is logged as the stats of
    the 'completed' event.

    Example:
        with pipeline_step(logger, "tune") as stats:
            result = run_tuning()
            stats["n_candidates"] = result["n_candidates"]
    """
    stats: dict[str, Any] = {}
    log_step(logger, step, 'started')
    start_time = time.perf_counter()
    try:
        yield stats
    except Exception:
        log_step(logger, step, 'failed', duration_ms=(time.perf_counter() - start_time) * 1000,
                 stats=stats, level=logging.ERROR)
        raise
    log_step(logger, step, 'completed', duration_ms=(time.perf_counter() - start_time) * 1000, stats=stats)


@contextmanager
def log_execution_time(
    logger: logging.Logger,
    operation: str,
    level: int = logging.INFO,
    extra_context: dict[str, Any] | None = None
) -> Generator[dict[str, Any], None, None]:
    """
    Time an operation inside a step and log its duration.

    Yields:
        Dict of counts to attach to the completion record

    Example:
        with log_execution_time(logger, "grid_search") as stats:
            search.fit(X, y)
            stats["n_candidates"] = len(grid)
    """
    stats: dict[str, Any] = {}
    start_time = time.perf_counter()
    try:
        yield stats
    finally:
        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.log(level, f"{operation} completed in {duration_ms / 1000:.1f}s", extra={
            'duration_ms': duration_ms,
            'stats': stats,
            'context': {'operation': operation, **(extra_context or {})},
        })


def log_scores(
    logger: logging.Logger,
    scores: dict[str, float],
    stage: str,
    config: str | None = None,
    level: int = logging.INFO,
) -> None:
    """
    Log the scores of one configuration.

    Args:
        logger: Logger instance
        scores: Metric name -> value
        stage: Where the scores come from ('cv' or 'test')
        config: Configuration label, e.g. 'Model007'
        level: Log level
    """
    scores = {name: float(value) for name, value in scores.items()}
    rendered = ', '.join(f"{name}={value:.4f}" for name, value in scores.items())
    label = f" {config}" if config else ""
    context = {'stage': stage}
    if config:
        context['config'] = config
    logger.log(level, f"{stage.upper()} scores{label}: {rendered}",
               extra={'scores': scores, 'context': context})


# =============================================================================
# PROJECT PATHS
# =============================================================================
PROJECT_ROOT = Path(os.environ.get('MATCHTUNE_PROJECT_ROOT', Path(__file__).parent.parent))
RAW_DATA_DIR = PROJECT_ROOT / "data" / "raw"
DATA_DIR = PROJECT_ROOT / "data" / "processed"
MODELS_DIR = PROJECT_ROOT / "models"
REPORTS_DIR = PROJECT_ROOT / "reports"
FIGURES_DIR = REPORTS_DIR / "figures"

RAW_MATCHES_FILE = 'matches.csv'
TRAIN_FILE = 'train.csv'
TEST_FILE = 'test.csv'

# NOTE: Directories are NOT created at import time.
# Call ensure_directories() explicitly in entry points.


def ensure_directories(create: bool = True) -> dict[str, Path]:
    """
    Ensure required project directories exist and are accessible.

    Args:
        create: If True, create missing directories. If False, only return them.

    Returns:
        Dict mapping directory names to Path objects.

    Raises:
        RuntimeError: If directory creation fails (permissions, disk full, etc.)
    """
    directories = {
        'raw_data': RAW_DATA_DIR,
        'data': DATA_DIR,
        'models': MODELS_DIR,
        'reports': REPORTS_DIR,
        'figures': FIGURES_DIR,
    }

    if not create:
        return directories

    for name, path in directories.items():
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise RuntimeError(
                f"Cannot create {name} directory at {path}: {e}"
            ) from e

    return directories


# =============================================================================
# COLOR PALETTE (immutable to prevent runtime modification)
# =============================================================================
COLORS = MappingProxyType({
    'primary': '#1428A0',
    'secondary': '#2596be',
    'blue_team': '#2563EB',
    'red_team': '#DC2626',
    'highlight': '#EA580C',
    'neutral': '#757575',
})

VIZ_CONFIG = MappingProxyType({
    'dpi': 150,
    'style': 'seaborn-v0_8-darkgrid',
    'palette': 'colorblind',
    'context': 'notebook',

    'title_fontsize': 14,
    'label_fontsize': 12,
    'tick_fontsize': 10,

    'primary': COLORS['primary'],
    'secondary': COLORS['secondary'],
    'win_color': COLORS['blue_team'],
    'loss_color': COLORS['red_team'],
    'neutral': COLORS['neutral'],

    'roc_color': COLORS['primary'],
    'optimal_marker': COLORS['highlight'],
    'heatmap_cmap': 'RdBu_r',
    'confusion_cmap': 'Blues',

    'figsize_wide': (12, 7),
    'figsize_medium': (8, 5),
    'figsize_square': (7, 6),

    'hist_bins': 30,
    'max_heatmap_features': 20,
})

# Final model artifacts
FINAL_ARTIFACTS = {
    'model': MODELS_DIR / 'final_model.pkl',
    'metadata': MODELS_DIR / 'final_model_metadata.json',
}

TUNING_REPORTS = {
    'metrics': REPORTS_DIR / 'tuning_metrics.csv',
    'results': REPORTS_DIR / 'tuning_results.csv',
    'summary': REPORTS_DIR / 'tuning_summary.json',
}

# MLflow configuration
MLFLOW_EXPERIMENT_NAME = "match-outcome-xgboost-tuning"

# Optuna configuration
# SQLite storage so interrupted studies can be resumed
OPTUNA_STORAGE_PATH = PROJECT_ROOT / "optuna_studies.db"
OPTUNA_N_TRIALS_DEFAULT = 50
