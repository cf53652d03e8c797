"""
Kubernetes operator for Cassandra DataCenter custom resources.

The handlers are kept thin and delegate to the datacenter package:
- Next-action decision (datacenter/decision.py)
- Action execution (datacenter/executor.py)
- Reconciliation pass and status persistence (datacenter/reconciler.py)
- Deletion (datacenter/deletion.py)
"""
import logging
from typing import Any

import kopf

from ..utils.kube import KubernetesConfigurationError, configure_kube_client
# NOTE: This is what registers our operator's function with kopf so that
#       `kopf.run -m cassandra_operator.operator.operator` can work. If you
#       add more handler modules, you must import them here.
# ruff: noqa: F401
from .datacenter import handler
from .config import config as operator_config


@kopf.on.startup()
async def on_startup(
    settings: kopf.OperatorSettings, logger: logging.Logger, **kwargs: Any
) -> None:
    """
    Handle the startup of the operator.

    This sets operator-wide settings.
    """
    try:
        configure_kube_client(logger)
    except KubernetesConfigurationError as exc:
        raise kopf.PermanentError(str(exc)) from exc

    logger.info("Operator started.")
    logger.info(f"Reconcile interval: {operator_config.reconcile_interval}s")

    # The default worker limit is unbounded which means you can EASILY flood
    # your API server on restart unless you limit it.
    settings.batching.worker_limit = operator_config.worker_limit

    # All logs by default go to the k8s event api making api server flooding
    # even more likely.
    settings.posting.enabled = operator_config.posting_enabled


@kopf.on.cleanup()
async def on_cleanup(logger: logging.Logger, **kwargs: Any) -> None:
    """Close the CQL sessions and the sidecar HTTP client."""
    runtime = handler.reset_runtime()
    if runtime is None:
        return
    runtime.reconciler.shutdown()
    await runtime.connections.close_all()
    await runtime.proxy.aclose()
    logger.info("Operator stopped.")
