"""
Model evaluation utilities.
"""

from .metrics import (
    SCORING,
    METRIC_DIRECTIONS,
    get_cv_splitter,
    unpack_confusion_matrix,
    calculate_sensitivity_specificity,
    evaluate_model,
    run_cv_evaluation,
)

__all__ = [
    'SCORING',
    'METRIC_DIRECTIONS',
    'get_cv_splitter',
    'unpack_confusion_matrix',
    'calculate_sensitivity_specificity',
    'evaluate_model',
    'run_cv_evaluation',
]
