"""MLflow utilities for experiment tracking.

Provides:
- Tracking setup (off, local file store, Databricks)
- Context manager for MLflow run orchestration
- Granular logging functions for parameters, metrics and artifacts
"""

from .io import (
    setup_mlflow_tracking,
    start_mlflow_run_context,
    log_parameters,
    log_metrics_dict,
    log_artifact_file,
)

__all__ = [
    "setup_mlflow_tracking",
    "start_mlflow_run_context",
    "log_parameters",
    "log_metrics_dict",
    "log_artifact_file",
]
