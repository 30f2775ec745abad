"""Utility modules for experiment tracking.

Submodules:
- mlflow: MLflow tracking setup and run logging

Import examples:
    from utils.mlflow import setup_mlflow_tracking, start_mlflow_run_context
"""

import warnings

# Suppress MLflow FutureWarning about filesystem backend deprecation
warnings.filterwarnings("ignore", category=FutureWarning, module="mlflow")

from . import mlflow  # noqa: E402

__all__ = [
    "mlflow",
]
