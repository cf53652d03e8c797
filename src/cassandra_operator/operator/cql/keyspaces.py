"""
Replication factor management of the keyspaces an operator-managed DC serves.

The replication factor of the local datacenter is always moved one unit at
a time. Each step re-reads the replication map, issues an ALTER carrying
the full map (so the other datacenters keep their values) and waits for
schema agreement before the next step.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional

from ...crds.datacenter import (
    DataCenter,
    DataCenterStatus,
    KeyspaceSpec,
    ManagedKeyspace,
)
from ...crds.errors import (
    CqlConnectionError,
    KeyspaceReplicationError,
    OperatorError,
    SchemaAgreementError,
)
from ...utils.retry import RetryPolicy
from ..datacenter.resources import names
from ..sidecar.client import NodeControlProxy, PodRef

if TYPE_CHECKING:
    from ..plugins import PluginRegistry
    from .connection import CqlSession

DEFAULT_SCHEMA_AGREEMENT_POLICY = RetryPolicy(max_attempts=20, delay=6.0)
REPLICATION_STRATEGY = "NetworkTopologyStrategy"


@dataclass
class CqlKeyspace:
    name: str
    rf: int
    repair: bool = False
    create_if_not_exists: bool = False
    # convergence markers, persisted in the status
    reconciled: bool = False
    reconcile_with_dc_size: int = 0

    def needs_reconcile(self, dc_size: int) -> bool:
        if not self.reconciled:
            return True
        return min(self.rf, self.reconcile_with_dc_size) != min(self.rf, dc_size)

    def mark_reconciled(self, dc_size: int) -> None:
        self.reconciled = True
        self.reconcile_with_dc_size = dc_size

    @classmethod
    def from_spec(cls, spec: KeyspaceSpec) -> "CqlKeyspace":
        return cls(
            name=spec.name,
            rf=spec.rf,
            repair=spec.repair,
            create_if_not_exists=spec.create_if_not_exists,
        )

    def to_status(self) -> ManagedKeyspace:
        return ManagedKeyspace(
            rf=self.rf,
            repair=self.repair,
            create_if_not_exists=self.create_if_not_exists,
            reconciled=self.reconciled,
            reconcile_with_dc_size=self.reconcile_with_dc_size,
        )


SYSTEM_KEYSPACES = (
    CqlKeyspace("system_auth", rf=3, repair=True),
    CqlKeyspace("system_distributed", rf=3),
    CqlKeyspace("system_traces", rf=3),
)


@dataclass
class KeyspaceOutcome:
    name: str
    previous_rf: int
    rf: int
    steps: List[int] = field(default_factory=list)
    repaired: bool = False
    cleanup: bool = False

    @property
    def changed(self) -> bool:
        return self.previous_rf != self.rf


def effective_rf(target: int, ready: int, desired: int) -> int:
    """The target RF capped by the number of nodes able to hold a replica, at least 1."""
    return max(1, min(target, ready, desired))


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def replication_map_cql(replication: Dict[str, int]) -> str:
    entries = [f"'class': '{REPLICATION_STRATEGY}'"]
    entries.extend(f"'{dc}': {rf}" for dc, rf in sorted(replication.items()) if rf > 0)
    return "{" + ", ".join(entries) + "}"


def alter_keyspace_cql(name: str, replication: Dict[str, int]) -> str:
    return f"ALTER KEYSPACE {quote_identifier(name)} WITH replication = {replication_map_cql(replication)}"


def create_keyspace_cql(name: str, replication: Dict[str, int]) -> str:
    return (
        f"CREATE KEYSPACE IF NOT EXISTS {quote_identifier(name)} "
        f"WITH replication = {replication_map_cql(replication)}"
    )


class KeyspaceManager:
    def __init__(
        self,
        proxy: NodeControlProxy,
        plugins: Optional["PluginRegistry"] = None,
        schema_policy: RetryPolicy = DEFAULT_SCHEMA_AGREEMENT_POLICY,
    ) -> None:
        self.proxy = proxy
        self.plugins = plugins
        self.schema_policy = schema_policy
        self._declared: Dict[str, Dict[str, CqlKeyspace]] = {}

    def declare(self, dc: DataCenter, keyspace: CqlKeyspace) -> None:
        """Adds ``keyspace`` to the keyspaces managed for ``dc`` unless already declared."""
        self._declared.setdefault(dc.key, {}).setdefault(keyspace.name, keyspace)

    def managed_keyspaces(self, dc: DataCenter, status: DataCenterStatus) -> Dict[str, CqlKeyspace]:
        """
        Builds the managed keyspaces of ``dc`` with their persisted markers.

        Keyspaces persisted in the status that nobody declares anymore are
        dropped from it.
        """
        self._declared[dc.key] = {}
        for template in SYSTEM_KEYSPACES:
            self.declare(dc, CqlKeyspace(template.name, template.rf, template.repair))
        if self.plugins is not None:
            self.plugins.sync_keyspaces(self, dc)
        for spec in dc.spec.keyspaces:
            self.declare(dc, CqlKeyspace.from_spec(spec))
        keyspaces = self._declared.pop(dc.key)

        persisted = status.keyspace_manager.keyspaces
        for name, keyspace in keyspaces.items():
            marker = persisted.get(name)
            if marker is not None:
                keyspace.reconciled = marker.reconciled
                keyspace.reconcile_with_dc_size = marker.reconcile_with_dc_size
        status.keyspace_manager.keyspaces = {name: ks.to_status() for name, ks in keyspaces.items()}
        return keyspaces

    async def read_replication(self, session: "CqlSession", name: str) -> Dict[str, int]:
        rows = await session.execute(
            "SELECT replication FROM system_schema.keyspaces WHERE keyspace_name = %s", (name,)
        )
        if not rows:
            raise KeyspaceReplicationError(f"Keyspace {name} does not exist")
        replication = rows[0]["replication"] or {}
        return {
            dc: int(rf)
            for dc, rf in replication.items()
            if dc not in ("class", "replication_factor")
        }

    async def create_keyspace_if_not_exists(
        self,
        dc: DataCenter,
        session: "CqlSession",
        keyspace: CqlKeyspace,
        rf: int,
        logger: logging.Logger,
    ) -> None:
        await session.execute(create_keyspace_cql(keyspace.name, {dc.spec.datacenter_name: rf}))
        logger.info(f"{dc.id} keyspace {keyspace.name} created with rf={rf}")

    async def reconcile_keyspaces(
        self,
        dc: DataCenter,
        status: DataCenterStatus,
        session: "CqlSession",
        logger: logging.Logger,
    ) -> bool:
        """
        Converges every managed keyspace to its effective RF.

        Failures are isolated per keyspace, except connectivity loss which
        is raised and ends the pass.
        """
        keyspaces = self.managed_keyspaces(dc, status)
        dc_size = dc.spec.replicas
        changed = False

        for keyspace in keyspaces.values():
            if not keyspace.create_if_not_exists or keyspace.reconciled:
                continue
            rf = effective_rf(keyspace.rf, status.ready_replicas, status.total_desired_replicas())
            try:
                await self.create_keyspace_if_not_exists(dc, session, keyspace, rf, logger)
            except CqlConnectionError:
                raise
            except OperatorError:
                logger.error(f"{dc.id} failed to create keyspace {keyspace.name}", exc_info=True)

        pending = [ks for ks in keyspaces.values() if ks.needs_reconcile(dc_size)]
        if status.keyspace_manager.replicas == dc_size and not pending:
            return changed

        failures = 0
        for keyspace in pending:
            target = effective_rf(keyspace.rf, status.ready_replicas, status.total_desired_replicas())
            try:
                outcome = await self.converge_replication(dc, status, session, keyspace, target, logger)
            except CqlConnectionError:
                raise
            except OperatorError:
                failures += 1
                logger.error(
                    f"{dc.id} failed to converge keyspace {keyspace.name} to rf={target}",
                    exc_info=True,
                )
                continue
            keyspace.mark_reconciled(dc_size)
            status.keyspace_manager.keyspaces[keyspace.name] = keyspace.to_status()
            changed = changed or outcome.changed

        if failures == 0 and status.keyspace_manager.replicas != dc_size:
            status.keyspace_manager.replicas = dc_size
            changed = True
        return changed

    async def converge_replication(
        self,
        dc: DataCenter,
        status: DataCenterStatus,
        session: "CqlSession",
        keyspace: CqlKeyspace,
        target_rf: int,
        logger: logging.Logger,
        trigger_repair_or_cleanup: bool = True,
    ) -> KeyspaceOutcome:
        local_dc = dc.spec.datacenter_name
        replication = await self.read_replication(session, keyspace.name)
        current = replication.get(local_dc, 0)
        outcome = KeyspaceOutcome(keyspace.name, previous_rf=current, rf=current)
        if current == target_rf:
            return outcome

        step = 1 if target_rf > current else -1
        for rf in range(current, target_rf + step, step):
            await self.schema_policy.run(
                lambda rf=rf: self._alter_step(session, keyspace.name, local_dc, rf, logger),
                retry_on=(SchemaAgreementError,),
                logger=logger,
                description=f"{dc.id} replication of {keyspace.name} to {local_dc}:{rf}",
            )
            outcome.steps.append(rf)
            outcome.rf = rf
        logger.info(
            f"{dc.id} keyspace {keyspace.name} replication for {local_dc} "
            f"changed from {current} to {target_rf}"
        )

        if not trigger_repair_or_cleanup:
            return outcome
        if target_rf > current and target_rf > 1 and keyspace.repair:
            await self._repair_all(dc, status, keyspace.name, logger)
            outcome.repaired = True
        elif target_rf < current and target_rf < dc.spec.replicas:
            if keyspace.name not in status.need_cleanup_keyspaces:
                status.need_cleanup_keyspaces.append(keyspace.name)
            status.need_cleanup = True
            outcome.cleanup = True
        return outcome

    async def _alter_step(
        self,
        session: "CqlSession",
        name: str,
        local_dc: str,
        rf: int,
        logger: logging.Logger,
    ) -> None:
        # re-read, another datacenter may have changed its own entry
        replication = await self.read_replication(session, name)
        replication[local_dc] = rf
        if all(value == 0 for value in replication.values()):
            logger.warning(f"Not altering keyspace {name}: every datacenter would have rf=0")
            return
        await session.execute(alter_keyspace_cql(name, replication))
        if not await session.schema_agreement():
            raise SchemaAgreementError(f"No schema agreement after altering keyspace {name}")

    async def _repair_all(
        self, dc: DataCenter, status: DataCenterStatus, keyspace: str, logger: logging.Logger
    ) -> None:
        pods = [
            PodRef.for_datacenter(dc, names.pod_name(dc.spec, rack.index, ordinal))
            for rack in status.sorted_racks()
            for ordinal in range(rack.desired_replicas)
        ]
        results = await asyncio.gather(
            *(self.proxy.repair(pod, keyspace) for pod in pods), return_exceptions=True
        )
        for pod, result in zip(pods, results):
            if isinstance(result, Exception):
                logger.warning(f"{dc.id} repair of {keyspace} on pod {pod.name} failed: {result}")

    async def decrease_rf_before_scale_down(
        self,
        dc: DataCenter,
        status: DataCenterStatus,
        session: "CqlSession",
        target_dc_size: int,
        logger: logging.Logger,
    ) -> None:
        """
        Caps every managed keyspace to ``target_dc_size``.

        Failures are isolated per keyspace, except connectivity loss which
        is raised so that no node is decommissioned with an uncapped RF.
        """
        local_dc = dc.spec.datacenter_name
        for keyspace in self.managed_keyspaces(dc, status).values():
            try:
                current = (await self.read_replication(session, keyspace.name)).get(local_dc, 0)
                target = min(current, target_dc_size)
                if target == current:
                    continue
                await self.converge_replication(
                    dc, status, session, keyspace, target, logger, trigger_repair_or_cleanup=False
                )
                keyspace.mark_reconciled(target_dc_size)
                status.keyspace_manager.keyspaces[keyspace.name] = keyspace.to_status()
            except CqlConnectionError:
                raise
            except OperatorError as e:
                logger.warning(
                    f"{dc.id} could not lower rf of {keyspace.name} before scale down: {e}"
                )

    async def remove_datacenter(
        self,
        dc: DataCenter,
        status: DataCenterStatus,
        session: "CqlSession",
        logger: logging.Logger,
    ) -> None:
        """Drops the local datacenter from every managed keyspace, best effort."""
        local_dc = dc.spec.datacenter_name
        for keyspace in self.managed_keyspaces(dc, status).values():
            try:
                replication = await self.read_replication(session, keyspace.name)
                if local_dc not in replication:
                    continue
                del replication[local_dc]
                if not any(rf > 0 for rf in replication.values()):
                    continue
                await session.execute(alter_keyspace_cql(keyspace.name, replication))
                logger.info(f"{dc.id} removed {local_dc} from keyspace {keyspace.name}")
            except OperatorError as e:
                logger.warning(f"{dc.id} could not remove {local_dc} from {keyspace.name}: {e}")
