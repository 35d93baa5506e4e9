"""
Match outcome classifier: exploration and boosted tree tuning walkthrough
"""

from . import config
from . import mlflow_utils

# Subpackages
from . import data
from . import models
from . import evaluation
from . import visualization

# Standalone modules
from . import tuning_utils

__version__ = '0.1.0'

__all__ = [
    # Core
    'config',
    'mlflow_utils',
    # Subpackages
    'data',
    'models',
    'evaluation',
    'visualization',
    # Standalone modules
    'tuning_utils',
]
