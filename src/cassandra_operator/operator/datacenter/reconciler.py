"""
Reconciliation driver for DataCenter resources.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

from ...crds.datacenter import DataCenter, DataCenterPhase, DataCenterStatus
from ...crds.errors import ReconcilerShutdownError, StatusConflictError
from ..cql.connection import CqlConnectionManager
from .cache import StatefulSetCache
from .decision import Observation, decide
from .executor import ActionExecutor
from .resources.configmap import DataCenterConfig, render_datacenter_config
from .store import KubernetesStore
from .zones import RackDeployment, Zones


@dataclass
class ReconciliationStats:
    begun: int = 0
    succeeded: int = 0
    failed: int = 0


class DataCenterReconciler:
    """
    Runs one reconciliation pass: read, decide, execute, persist.

    A pass never waits for the cluster to converge; the next event or timer
    tick picks up where it stopped.
    """

    def __init__(
        self,
        store: KubernetesStore,
        cache: StatefulSetCache,
        executor: ActionExecutor,
        connections: CqlConnectionManager,
    ) -> None:
        self.store = store
        self.cache = cache
        self.executor = executor
        self.connections = connections
        self.stats = ReconciliationStats()
        self._stopping = False

    def shutdown(self) -> None:
        """Makes every pass from now on stop with ``ReconcilerShutdownError``."""
        self._stopping = True

    async def reconcile(
        self,
        namespace: str,
        name: str,
        logger: logging.Logger,
        triggered_by: str = "reconcile",
    ) -> Optional[DataCenterStatus]:
        self.stats.begun += 1
        try:
            status = await self._reconcile(namespace, name, logger, triggered_by)
        except (ReconcilerShutdownError, asyncio.CancelledError):
            logger.info(f"datacenter={namespace}/{name} reconciliation interrupted by shutdown")
            raise
        except Exception:
            self.stats.failed += 1
            raise
        self.stats.succeeded += 1
        return status

    async def _reconcile(
        self, namespace: str, name: str, logger: logging.Logger, triggered_by: str
    ) -> Optional[DataCenterStatus]:
        self._check_running(namespace, name)
        dc = await self.store.read_datacenter(namespace, name)
        if dc.status.block.locked:
            logger.info(f"{dc.id} is locked ({', '.join(dc.status.block.reasons)}), skipping")
            return None

        config = await self.render_config(dc)
        observation = await self.observe(dc, config.fingerprint)
        decision = decide(dc.spec, dc.status, observation)
        logger.info(f"{dc.id} next action: {decision.action.describe()}")
        self._check_running(namespace, name)

        try:
            status = await self.executor.execute(dc, decision, config, logger, triggered_by)
        except (StatusConflictError, ReconcilerShutdownError, asyncio.CancelledError):
            raise
        except Exception as e:
            logger.error(f"{dc.id} {decision.action.kind.value} failed: {e}", exc_info=True)
            failed = dc.status.copy()
            failed.phase = DataCenterPhase.ERROR
            failed.last_message = str(e)
            try:
                await self.store.update_status(dc, failed)
            except StatusConflictError as conflict:
                logger.warning(f"{dc.id} ERROR phase not recorded, status changed meanwhile")
                raise conflict from e
            raise

        if status != dc.status:
            await self.store.update_status(dc, status)
        if status.phase != DataCenterPhase.RUNNING:
            await self.connections.evict(dc.key)
        return status

    def _check_running(self, namespace: str, name: str) -> None:
        if self._stopping:
            raise ReconcilerShutdownError(
                f"Reconciler is shutting down, datacenter={namespace}/{name} not reconciled"
            )

    async def render_config(self, dc: DataCenter) -> DataCenterConfig:
        user_data = None
        if dc.spec.user_config_map_name:
            user_data = await self.store.read_configmap_data(
                dc.metadata.namespace, dc.spec.user_config_map_name
            )
        return render_datacenter_config(dc, user_data)

    async def observe(self, dc: DataCenter, fingerprint: str) -> Observation:
        node_zones = await self.store.list_node_zones()
        statefulsets = await self.cache.get(dc.key)
        deployments: List[RackDeployment] = [
            RackDeployment.from_statefulset(sts) for sts in statefulsets
        ]
        return Observation(
            zones=Zones(node_zones, deployments),
            fingerprint=fingerprint,
            generation=dc.metadata.generation,
        )
