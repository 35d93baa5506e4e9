"""
Model building utilities.
"""

from .factory import (
    build_model,
    build_pipeline,
)
from .registry import (
    TUNABLE_PARAMS,
    PARAM_ALIASES,
    SEARCH_SPACE,
    DEFAULT_PARAMS,
    FIXED_PARAMS,
    INT_PARAMS,
    finalize_space,
    to_xgb_params,
    create_xgboost_model,
)

__all__ = [
    'build_model',
    'build_pipeline',
    'TUNABLE_PARAMS',
    'PARAM_ALIASES',
    'SEARCH_SPACE',
    'DEFAULT_PARAMS',
    'FIXED_PARAMS',
    'INT_PARAMS',
    'finalize_space',
    'to_xgb_params',
    'create_xgboost_model',
]
