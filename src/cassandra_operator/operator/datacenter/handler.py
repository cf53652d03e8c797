import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import kopf

from ...crds.const import (
    CRD_GROUP,
    CRD_PLURAL_DATACENTER,
    CRD_VERSION,
    LABEL_MANAGED_BY,
    LABEL_MANAGED_BY_VALUE,
    LABEL_PARENT,
)
from ...crds.datacenter import DataCenter
from ...crds.errors import (
    CqlConnectionError,
    DecommissionError,
    ReconcilerShutdownError,
    StatusConflictError,
)
from ...utils.retry import RetryPolicy
from ..config import config as operator_config
from ..cql.connection import CqlConnectionManager
from ..cql.keyspaces import KeyspaceManager
from ..cql.roles import CqlRoleManager
from ..plugins import default_registry
from ..sidecar.client import NodeControlProxy
from .cache import StatefulSetCache
from .deletion import DataCenterDeletion
from .executor import ActionExecutor
from .reconciler import DataCenterReconciler
from .store import KubernetesStore

# errors after which the next pass is expected to succeed
RETRYABLE_ERRORS = (StatusConflictError, CqlConnectionError, DecommissionError)


@dataclass
class Runtime:
    store: KubernetesStore
    cache: StatefulSetCache
    connections: CqlConnectionManager
    proxy: NodeControlProxy
    reconciler: DataCenterReconciler
    deletion: DataCenterDeletion


_runtime: Optional[Runtime] = None


def build_runtime() -> Runtime:
    store = KubernetesStore()

    async def load_statefulsets(key: str):
        namespace, name = key.split("/", 1)
        return await store.list_rack_statefulsets(namespace, name)

    cache = StatefulSetCache(load_statefulsets, ttl=operator_config.statefulset_cache_ttl)
    connections = CqlConnectionManager(store)
    proxy = NodeControlProxy(timeout=operator_config.sidecar_timeout)
    plugins = default_registry()
    keyspaces = KeyspaceManager(
        proxy,
        plugins,
        schema_policy=RetryPolicy(
            operator_config.schema_agreement_attempts, operator_config.schema_agreement_delay
        ),
    )
    executor = ActionExecutor(
        store,
        cache,
        connections,
        keyspaces,
        CqlRoleManager(store),
        plugins,
        proxy,
        default_image=operator_config.default_image,
        sidecar_image=operator_config.sidecar_image,
        history_depth=operator_config.operation_history_depth,
        decommission_policy=RetryPolicy(
            operator_config.decommission_attempts, operator_config.decommission_delay
        ),
    )
    return Runtime(
        store=store,
        cache=cache,
        connections=connections,
        proxy=proxy,
        reconciler=DataCenterReconciler(store, cache, executor, connections),
        deletion=DataCenterDeletion(store, cache, connections, keyspaces),
    )


def get_runtime() -> Runtime:
    # built lazily, the kubernetes client is configured at operator startup
    global _runtime
    if _runtime is None:
        _runtime = build_runtime()
    return _runtime


def reset_runtime() -> Optional[Runtime]:
    global _runtime
    runtime, _runtime = _runtime, None
    return runtime


async def _reconcile(name: str, namespace: str, logger: logging.Logger, triggered_by: str) -> None:
    try:
        await get_runtime().reconciler.reconcile(namespace, name, logger, triggered_by)
    except ReconcilerShutdownError:
        # resumed after restart
        return
    except RETRYABLE_ERRORS as e:
        raise kopf.TemporaryError(str(e), delay=operator_config.reconcile_interval) from e


@kopf.on.create(CRD_GROUP, CRD_VERSION, CRD_PLURAL_DATACENTER)
@kopf.on.update(CRD_GROUP, CRD_VERSION, CRD_PLURAL_DATACENTER)
@kopf.on.resume(CRD_GROUP, CRD_VERSION, CRD_PLURAL_DATACENTER)
async def reconcile_datacenter(
    name: str, namespace: str, logger: logging.Logger, reason: Any = None, **kwargs: Any
) -> None:
    """Handle a change of a DataCenter resource."""
    logger.info(f"Reconciling DataCenter '{name}' in namespace '{namespace}'...")
    await _reconcile(name, namespace, logger, triggered_by=str(reason or "update"))


@kopf.timer(CRD_GROUP, CRD_VERSION, CRD_PLURAL_DATACENTER, interval=operator_config.reconcile_interval)
async def reconcile_datacenter_periodically(
    name: str, namespace: str, logger: logging.Logger, **kwargs: Any
) -> None:
    await _reconcile(name, namespace, logger, triggered_by="timer")


@kopf.on.delete(CRD_GROUP, CRD_VERSION, CRD_PLURAL_DATACENTER)
async def delete_datacenter(body: Dict[str, Any], logger: logging.Logger, **kwargs: Any) -> None:
    """
    Handle the deletion of a DataCenter resource.

    The datacenter is removed from the replication of its keyspaces before
    its StatefulSets, ConfigMaps, Services and (depending on the
    decommission policy) volumes are deleted.
    """
    dc = DataCenter.from_body(dict(body))
    await get_runtime().deletion.delete(dc, logger)


@kopf.on.event("apps", "v1", "statefulsets", labels={LABEL_MANAGED_BY: LABEL_MANAGED_BY_VALUE})
async def statefulset_event(
    namespace: str, labels: Dict[str, str], logger: logging.Logger, **kwargs: Any
) -> None:
    parent = labels.get(LABEL_PARENT)
    if parent:
        get_runtime().cache.invalidate(f"{namespace}/{parent}")
