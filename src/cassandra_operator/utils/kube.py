"""
Helpers shared by everything that talks to the Kubernetes API.
"""
from __future__ import annotations

import logging
from typing import Any, Literal, Mapping, Optional

from kubernetes import config as kube_config


class KubernetesConfigurationError(RuntimeError):
    """Raised when the Kubernetes client cannot be configured."""


def configure_kube_client(
    logger: Optional[logging.Logger] = None,
    *,
    kubeconfig_path: Optional[str] = None,
) -> Literal["in-cluster", "kubeconfig"]:
    """
    Configure the Kubernetes client.

    In-cluster credentials are tried first, then the default kubeconfig.
    When ``kubeconfig_path`` is given only that file is used.

    Raises:
        KubernetesConfigurationError: If no configuration source worked.
    """
    log = logger or logging.getLogger(__name__)

    if kubeconfig_path:
        try:
            kube_config.load_kube_config(config_file=kubeconfig_path)
        except kube_config.ConfigException as exc:
            message = f"Could not load kubeconfig '{kubeconfig_path}'."
            log.error("%s %s", message, exc)
            raise KubernetesConfigurationError(message) from exc
        log.info("Using kubeconfig at '%s'.", kubeconfig_path)
        return "kubeconfig"

    try:
        kube_config.load_incluster_config()
        log.info("Using in-cluster Kubernetes configuration.")
        return "in-cluster"
    except kube_config.ConfigException as incluster_error:
        try:
            kube_config.load_kube_config()
        except kube_config.ConfigException as kubeconfig_error:
            message = (
                "Unable to configure Kubernetes client using either "
                "in-cluster credentials or the default kubeconfig."
            )
            log.error(message)
            log.debug("In-cluster configuration error: %s", incluster_error)
            log.debug("Default kubeconfig error: %s", kubeconfig_error)
            raise KubernetesConfigurationError(message) from kubeconfig_error
        log.info("Using local kubeconfig.")
        return "kubeconfig"


def to_label_selector(labels: Mapping[str, str]) -> str:
    """Render a label dict as an equality-based selector string."""
    return ",".join(f"{k}={v}" for k, v in sorted(labels.items()))


def get_field(obj: Any, *path: str, default: Any = None) -> Any:
    """
    Read a nested field from either a kubernetes model object or a plain dict.

    The kubernetes client returns typed models (snake_case attributes) while
    tests and the builders in this package use camelCase dicts; both shapes
    are accepted. Each path element is given in snake_case.
    """
    current = obj
    for attr in path:
        if current is None:
            return default
        if isinstance(current, dict):
            if attr in current:
                current = current[attr]
            else:
                current = current.get(_camel(attr))
        else:
            current = getattr(current, attr, None)
    return default if current is None else current


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)

