"""MLflow I/O utilities for experiment tracking.

This module provides helpers for:
- Setting up MLflow tracking (off, local or Databricks).
- Orchestrating MLflow runs (context manager for parent/nested runs).
- Logging parameters, metrics, and artifacts.
"""

import logging
import os
from contextlib import contextmanager
from pathlib import Path

import mlflow

log = logging.getLogger(__name__)


def setup_mlflow_tracking(mode: str = "local") -> bool:
    """
    Configures MLflow tracking.

    Parameters
    ----------
    mode : str
        "off", "local" or "databricks".

    Returns
    -------
    bool
        False when tracking is switched off.
    """
    if mode == "off":
        log.info("MLflow tracking disabled.")
        return False
    elif mode == "databricks":
        try:
            mlflow.login(backend="databricks", interactive=False)
            mlflow.set_tracking_uri("databricks")
            log.info("Connected to Databricks MLflow tracking.")
        except Exception as e:
            raise RuntimeError(
                "MLflow Databricks setup failed. Ensure credentials are configured."
            ) from e
    elif mode == "local":
        mlruns_uri = f"file://{Path.cwd() / 'mlruns'}"
        mlflow.set_tracking_uri(mlruns_uri)
        log.info(f"Using local file-based MLflow tracking backend: {mlruns_uri}")
    else:
        log.warning(
            f"Unknown MLflow mode '{mode}'. Using existing URI: {mlflow.get_tracking_uri()}"
        )
    return True


def get_mlflow_client() -> mlflow.tracking.MlflowClient:
    """Get an MLflow tracking client."""
    return mlflow.tracking.MlflowClient()


@contextmanager
def start_mlflow_run_context(
    experiment_name: str,
    parent_run_name: str,
    child_run_name: str,
    project_prefix: str = "/Shared/OpenBC",
):
    """
    Context manager to start a nested MLflow run.

    Child runs of the same problem size share one parent run, found by name.
    """
    if mlflow.get_tracking_uri() == "databricks" and not experiment_name.startswith("/"):
        experiment_name = f"{project_prefix}/{experiment_name}"

    mlflow.set_experiment(experiment_name)
    log.info(f"Using MLflow experiment: {experiment_name}")

    client = get_mlflow_client()
    exp = mlflow.get_experiment_by_name(experiment_name)

    parent_runs = client.search_runs(
        experiment_ids=[exp.experiment_id],
        filter_string=f"tags.mlflow.runName = '{parent_run_name}' AND tags.is_parent = 'true'",
        max_results=1,
    )
    parent_run_id = parent_runs[0].info.run_id if parent_runs else None

    with mlflow.start_run(
        run_id=parent_run_id, run_name=parent_run_name, tags={"is_parent": "true"}
    ):
        with mlflow.start_run(run_name=child_run_name, nested=True) as child_mlflow_run:
            # Tag run with environment (HPC vs local) for easy filtering
            env = (
                "hpc"
                if os.environ.get("LSB_JOBID") or os.environ.get("SLURM_JOB_ID")
                else "local"
            )
            mlflow.set_tag("environment", env)

            log.info(
                f"Started MLflow run '{child_mlflow_run.info.run_name}' "
                f"({child_mlflow_run.info.run_id}) [{env}]"
            )
            yield child_mlflow_run


def log_parameters(params: dict):
    """Log a dictionary of parameters to the active MLflow run."""
    mlflow.log_params(params)


def log_metrics_dict(metrics: dict):
    """Log a dictionary of metrics to the active MLflow run, filtering out None values."""
    filtered_metrics = {k: v for k, v in metrics.items() if v is not None}
    mlflow.log_metrics(filtered_metrics)


def log_artifact_file(filepath: Path):
    """Log a file as an artifact to the active MLflow run."""
    filepath = Path(filepath)
    if filepath.exists():
        mlflow.log_artifact(str(filepath))
        log.info(f"Logged artifact: {filepath.name}")
    else:
        log.warning(f"Artifact file not found at {filepath}")
