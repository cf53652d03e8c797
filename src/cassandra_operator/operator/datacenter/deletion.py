import logging

from ...crds.datacenter import CqlStatus, DataCenter, DataCenterPhase, DecommissionPolicy
from ...crds.errors import OperatorError
from ..cql.connection import CqlConnectionManager
from ..cql.keyspaces import KeyspaceManager
from .cache import StatefulSetCache
from .resources import names
from .store import KubernetesStore


class DataCenterDeletion:
    """
    Removes everything a DataCenter owns once the resource is deleted.

    Each step is attempted even when a previous one failed; failures are
    logged.
    """

    def __init__(
        self,
        store: KubernetesStore,
        cache: StatefulSetCache,
        connections: CqlConnectionManager,
        keyspaces: KeyspaceManager,
    ) -> None:
        self.store = store
        self.cache = cache
        self.connections = connections
        self.keyspaces = keyspaces

    async def delete(self, dc: DataCenter, logger: logging.Logger) -> None:
        logger.info(f"{dc.id} is being deleted")
        await self._remove_from_replication(dc, logger)
        await self.connections.evict(dc.key)
        self.cache.invalidate(dc.key)

        namespace = dc.metadata.namespace
        labels = names.datacenter_labels(dc)
        steps = [
            ("statefulsets", self.store.delete_statefulsets),
            ("configmaps", self.store.delete_configmaps),
            ("secrets", self.store.delete_secrets),
            ("services", self.store.delete_services),
        ]
        if dc.spec.decommission_policy != DecommissionPolicy.KEEP_PVC:
            steps.append(("persistent volume claims", self.store.delete_pvcs))

        for kind, delete in steps:
            try:
                await delete(namespace, labels, logger)
            except Exception:
                logger.error(f"{dc.id} failed to delete {kind}", exc_info=True)
        logger.info(f"{dc.id} deleted")

    async def _remove_from_replication(self, dc: DataCenter, logger: logging.Logger) -> None:
        status = dc.status
        if status.phase != DataCenterPhase.RUNNING or status.cql_status != CqlStatus.ESTABLISHED:
            return
        try:
            session = await self.connections.get_or_create_session(dc, status, logger)
        except OperatorError as e:
            logger.warning(f"{dc.id} keyspaces not updated on deletion: {e}")
            return
        await self.keyspaces.remove_datacenter(dc, status, session, logger)
