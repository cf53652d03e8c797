"""
Applies the action chosen by ``decide`` to the cluster.
"""
import logging
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict

from ...crds.datacenter import (
    CqlStatus,
    DataCenter,
    DataCenterStatus,
    Operation,
)
from ...crds.errors import CqlConnectionError, DecommissionError, NodeControlError
from ...utils.retry import RetryPolicy
from ..cql.connection import CqlConnectionManager
from ..cql.keyspaces import KeyspaceManager
from ..cql.roles import CqlRoleManager
from ..plugins import PluginContext, PluginRegistry
from ..sidecar.client import NodeControlProxy, PodRef
from .cache import StatefulSetCache
from .decision import Action, ActionKind, Decision
from .resources import names
from .resources.configmap import DataCenterConfig, build_rack_configmap
from .resources.secrets import build_cluster_secret
from .resources.services import build_datacenter_services
from .resources.statefulset import build_rack_statefulset
from .store import KubernetesStore

DEFAULT_DECOMMISSION_POLICY = RetryPolicy(max_attempts=5, delay=2.0)


class ActionExecutor:
    def __init__(
        self,
        store: KubernetesStore,
        cache: StatefulSetCache,
        connections: CqlConnectionManager,
        keyspaces: KeyspaceManager,
        roles: CqlRoleManager,
        plugins: PluginRegistry,
        proxy: NodeControlProxy,
        *,
        default_image: str,
        sidecar_image: str,
        history_depth: int = 16,
        decommission_policy: RetryPolicy = DEFAULT_DECOMMISSION_POLICY,
    ) -> None:
        self.store = store
        self.cache = cache
        self.connections = connections
        self.keyspaces = keyspaces
        self.roles = roles
        self.plugins = plugins
        self.proxy = proxy
        self.default_image = default_image
        self.sidecar_image = sidecar_image
        self.history_depth = history_depth
        self.decommission_policy = decommission_policy

        self._handlers: Dict[ActionKind, Callable[..., Awaitable[None]]] = {
            ActionKind.CREATE_RACK: self._create_rack,
            ActionKind.SCALE_UP: self._scale_up,
            ActionKind.ROLLING_UPDATE: self._rolling_update,
            ActionKind.PARK: self._park,
            ActionKind.UNPARK: self._unpark,
            ActionKind.SCALE_DOWN: self._scale_down,
            ActionKind.MAINTENANCE: self._maintenance,
        }

    async def execute(
        self,
        dc: DataCenter,
        decision: Decision,
        config: DataCenterConfig,
        logger: logging.Logger,
        triggered_by: str = "reconcile",
    ) -> DataCenterStatus:
        """
        Runs ``decision.action`` and returns the resulting status.

        The status is not persisted here. Errors of the action are raised
        to the caller; errors of maintenance sub-steps are isolated.
        """
        action = decision.action
        status = decision.status
        if action.message:
            logger.warning(f"{dc.id} {action.message}")

        handler = self._handlers.get(action.kind)
        if handler is None:
            logger.debug(f"{dc.id} nothing to do ({action.kind.value})")
            return status

        started = time.monotonic()
        submitted = datetime.now(timezone.utc).isoformat()
        await handler(dc, action, status, config, logger)

        if action.is_mutating:
            self.cache.invalidate(dc.key)
            self._record_operation(
                status,
                Operation(
                    triggered_by=triggered_by,
                    submit_date=submitted,
                    actions=[action.describe()],
                    duration_ms=int((time.monotonic() - started) * 1000),
                ),
            )
        return status

    def _record_operation(self, status: DataCenterStatus, operation: Operation) -> None:
        status.operation_history.insert(0, operation)
        del status.operation_history[self.history_depth:]

    async def _apply_configmaps(
        self, dc: DataCenter, action: Action, config: DataCenterConfig, logger: logging.Logger
    ) -> None:
        namespace = dc.metadata.namespace
        for configmap in config.shared_configmaps():
            await self.store.apply_configmap(namespace, configmap, logger)
        if action.zone is not None and action.rack_index is not None:
            await self.store.apply_configmap(
                namespace, build_rack_configmap(dc, action.zone, action.rack_index), logger
            )

    def _statefulset(self, dc: DataCenter, action: Action, config: DataCenterConfig):
        return build_rack_statefulset(
            dc,
            action.zone,
            action.rack_index,
            action.replicas,
            config.fingerprint,
            default_image=self.default_image,
            sidecar_image=self.sidecar_image,
        )

    async def _create_rack(self, dc, action, status, config, logger) -> None:
        namespace = dc.metadata.namespace
        await self.store.ensure_secret(namespace, build_cluster_secret(dc), logger)
        for service in build_datacenter_services(dc):
            await self.store.apply_service(namespace, service, logger)
        await self._apply_configmaps(dc, action, config, logger)
        await self.store.apply_statefulset(namespace, self._statefulset(dc, action, config), logger)
        logger.info(f"{dc.id} rack {action.rack_index} created in zone {action.zone}")

    async def _scale_up(self, dc, action, status, config, logger) -> None:
        # the seed list may have changed, it never triggers a restart
        await self._apply_configmaps(dc, action, config, logger)
        await self.store.scale_statefulset(
            dc.metadata.namespace, action.statefulset, action.replicas, logger
        )

    async def _rolling_update(self, dc, action, status, config, logger) -> None:
        await self._apply_configmaps(dc, action, config, logger)
        await self.store.apply_statefulset(
            dc.metadata.namespace, self._statefulset(dc, action, config), logger
        )
        logger.info(f"{dc.id} rolling update of rack {action.rack_index} started")

    async def _park(self, dc, action, status, config, logger) -> None:
        for rack in status.sorted_racks():
            await self.store.scale_statefulset(
                dc.metadata.namespace, names.rack_statefulset(dc.spec, rack.index), 0, logger
            )
        await self.connections.evict(dc.key)
        logger.info(f"{dc.id} parked")

    async def _unpark(self, dc, action, status, config, logger) -> None:
        for rack in status.sorted_racks():
            await self.store.scale_statefulset(
                dc.metadata.namespace,
                names.rack_statefulset(dc.spec, rack.index),
                rack.desired_replicas,
                logger,
            )
        logger.info(f"{dc.id} unparked")

    async def _scale_down(self, dc, action, status, config, logger) -> None:
        if action.decommission_pod:
            await self._lower_replication(dc, action, status, logger)
            pod = PodRef.for_datacenter(dc, action.decommission_pod)
            try:
                await self.decommission_policy.run(
                    lambda: self.proxy.decommission(pod),
                    retry_on=(NodeControlError,),
                    logger=logger,
                    description=f"{dc.id} decommission of {pod.name}",
                )
            except NodeControlError as e:
                raise DecommissionError(f"Decommission of pod {pod.name} failed: {e}") from e
            logger.info(f"{dc.id} pod {pod.name} decommissioned")
        await self.store.scale_statefulset(
            dc.metadata.namespace, action.statefulset, action.replicas, logger
        )

    async def _lower_replication(self, dc, action, status, logger) -> None:
        # the scale down is retried on a later pass when CQL is unreachable
        try:
            session = await self.connections.get_or_create_session(dc, status, logger)
            await self.keyspaces.decrease_rf_before_scale_down(
                dc, status, session, action.rf_target_dc_size, logger
            )
        except CqlConnectionError as e:
            logger.warning(f"{dc.id} keyspaces not capped, scale down postponed: {e}")
            await self.connections.evict(dc.key)
            raise

    async def _maintenance(self, dc, action, status, config, logger) -> None:
        try:
            session = await self.connections.get_or_create_session(dc, status, logger)
            await self.keyspaces.reconcile_keyspaces(dc, status, session, logger)
            await self.roles.reconcile_roles(dc, status, session, logger)
        except CqlConnectionError as e:
            logger.warning(f"{dc.id} CQL unavailable, maintenance skipped: {e}")
            status.cql_status = CqlStatus.ERRORED
            status.cql_error_message = str(e)
            await self.connections.evict(dc.key)
            return
        await self.plugins.reconcile_all(
            PluginContext(dc=dc, status=status, session=session, store=self.store, logger=logger)
        )
