"""
The DataCenter custom resource: typed spec and status.

Field names on the wire are camelCase, as declared by the CRD; the
dataclasses use snake_case and convert in ``from_dict``/``to_dict``.
"""
import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from kubernetes import client

from .base import BaseCustomResource, ObjectMeta
from .const import CRD_GROUP, CRD_KIND_DATACENTER, CRD_PLURAL_DATACENTER, CRD_VERSION


class DataCenterPhase(str, Enum):
    CREATING = "CREATING"
    RUNNING = "RUNNING"
    PARKED = "PARKED"
    ERROR = "ERROR"


class Health(str, Enum):
    GREEN = "GREEN"
    YELLOW = "YELLOW"
    RED = "RED"


class ProgressState(str, Enum):
    RUNNING = "RUNNING"
    UPDATING = "UPDATING"


class CqlStatus(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    ESTABLISHED = "ESTABLISHED"
    ERRORED = "ERRORED"


class Authentication(str, Enum):
    NONE = "NONE"
    CASSANDRA = "CASSANDRA"


class DecommissionPolicy(str, Enum):
    KEEP_PVC = "KEEP_PVC"
    DELETE_PVC = "DELETE_PVC"
    BACKUP_AND_DELETE_PVC = "BACKUP_AND_DELETE_PVC"


@dataclass
class SearchSpec:
    enabled: bool = False
    datacenter_group: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SearchSpec":
        data = data or {}
        return cls(
            enabled=bool(data.get("enabled", False)),
            datacenter_group=data.get("datacenterGroup"),
        )

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"enabled": self.enabled}
        if self.datacenter_group:
            body["datacenterGroup"] = self.datacenter_group
        return body


@dataclass
class KeyspaceSpec:
    """A user keyspace whose replication the operator keeps in line with the DC size."""

    name: str
    rf: int = 3
    repair: bool = False
    create_if_not_exists: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KeyspaceSpec":
        return cls(
            name=data["name"],
            rf=int(data.get("rf", 3)),
            repair=bool(data.get("repair", False)),
            create_if_not_exists=bool(data.get("createIfNotExists", True)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "rf": self.rf,
            "repair": self.repair,
            "createIfNotExists": self.create_if_not_exists,
        }


@dataclass
class DataCenterSpec:
    cluster_name: str
    datacenter_name: str
    replicas: int = 1
    parked: bool = False
    authentication: Authentication = Authentication.CASSANDRA
    ssl: bool = False
    decommission_policy: DecommissionPolicy = DecommissionPolicy.DELETE_PVC
    image: Optional[str] = None
    native_port: int = 9042
    sidecar_port: int = 8080
    search: SearchSpec = field(default_factory=SearchSpec)
    keyspaces: List[KeyspaceSpec] = field(default_factory=list)
    user_config_map_name: Optional[str] = None
    resources: Dict[str, Any] = field(default_factory=dict)
    storage: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DataCenterSpec":
        return cls(
            cluster_name=data["clusterName"],
            datacenter_name=data["datacenterName"],
            replicas=int(data.get("replicas", 1)),
            parked=bool(data.get("parked", False)),
            authentication=Authentication(data.get("authentication", Authentication.CASSANDRA.value)),
            ssl=bool(data.get("ssl", False)),
            decommission_policy=DecommissionPolicy(
                data.get("decommissionPolicy", DecommissionPolicy.DELETE_PVC.value)
            ),
            image=data.get("image"),
            native_port=int(data.get("nativePort", 9042)),
            sidecar_port=int(data.get("sidecarPort", 8080)),
            search=SearchSpec.from_dict(data.get("search")),
            keyspaces=[KeyspaceSpec.from_dict(k) for k in data.get("keyspaces") or []],
            user_config_map_name=data.get("userConfigMapName"),
            resources=dict(data.get("resources") or {}),
            storage=dict(data.get("storage") or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "clusterName": self.cluster_name,
            "datacenterName": self.datacenter_name,
            "replicas": self.replicas,
            "parked": self.parked,
            "authentication": self.authentication.value,
            "ssl": self.ssl,
            "decommissionPolicy": self.decommission_policy.value,
            "nativePort": self.native_port,
            "sidecarPort": self.sidecar_port,
            "search": self.search.to_dict(),
            "keyspaces": [k.to_dict() for k in self.keyspaces],
        }
        if self.image:
            body["image"] = self.image
        if self.user_config_map_name:
            body["userConfigMapName"] = self.user_config_map_name
        if self.resources:
            body["resources"] = self.resources
        if self.storage:
            body["storage"] = self.storage
        return body


@dataclass
class RackStatus:
    index: int
    name: str
    desired_replicas: int = 0
    ready_replicas: int = 0
    progress_state: ProgressState = ProgressState.RUNNING
    health: Health = Health.RED
    fingerprint: Optional[str] = None

    def compute_health(self) -> Health:
        if self.desired_replicas == 0:
            # emptied by a scale down
            return Health.GREEN if self.ready_replicas == 0 else Health.YELLOW
        if self.ready_replicas >= self.desired_replicas:
            return Health.GREEN
        if self.ready_replicas > 0:
            return Health.YELLOW
        return Health.RED

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RackStatus":
        return cls(
            index=int(data["index"]),
            name=data["name"],
            desired_replicas=int(data.get("desiredReplicas", 0)),
            ready_replicas=int(data.get("readyReplicas", 0)),
            progress_state=ProgressState(data.get("progressState", ProgressState.RUNNING.value)),
            health=Health(data.get("health", Health.RED.value)),
            fingerprint=data.get("fingerprint"),
        )

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "index": self.index,
            "name": self.name,
            "desiredReplicas": self.desired_replicas,
            "readyReplicas": self.ready_replicas,
            "progressState": self.progress_state.value,
            "health": self.health.value,
        }
        if self.fingerprint:
            body["fingerprint"] = self.fingerprint
        return body


@dataclass
class Operation:
    """One entry of the operation history shown to users in the status."""

    triggered_by: str
    submit_date: str
    actions: List[str] = field(default_factory=list)
    duration_ms: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Operation":
        return cls(
            triggered_by=data.get("triggeredBy", ""),
            submit_date=data.get("submitDate", ""),
            actions=list(data.get("actions") or []),
            duration_ms=int(data.get("durationMs", 0)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "triggeredBy": self.triggered_by,
            "submitDate": self.submit_date,
            "actions": list(self.actions),
            "durationMs": self.duration_ms,
        }


@dataclass
class BlockStatus:
    """Set by long running tasks to keep reconciliation off the datacenter."""

    locked: bool = False
    reasons: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "BlockStatus":
        data = data or {}
        return cls(locked=bool(data.get("locked", False)), reasons=list(data.get("reasons") or []))

    def to_dict(self) -> Dict[str, Any]:
        return {"locked": self.locked, "reasons": list(self.reasons)}


@dataclass
class ManagedKeyspace:
    """Persisted convergence state of one managed keyspace."""

    rf: int
    repair: bool = False
    create_if_not_exists: bool = False
    reconciled: bool = False
    reconcile_with_dc_size: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ManagedKeyspace":
        return cls(
            rf=int(data.get("rf", 1)),
            repair=bool(data.get("repair", False)),
            create_if_not_exists=bool(data.get("createIfNotExists", False)),
            reconciled=bool(data.get("reconciled", False)),
            reconcile_with_dc_size=int(data.get("reconcileWithDcSize", 0)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rf": self.rf,
            "repair": self.repair,
            "createIfNotExists": self.create_if_not_exists,
            "reconciled": self.reconciled,
            "reconcileWithDcSize": self.reconcile_with_dc_size,
        }


@dataclass
class KeyspaceManagerStatus:
    replicas: int = 0
    keyspaces: Dict[str, ManagedKeyspace] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "KeyspaceManagerStatus":
        data = data or {}
        return cls(
            replicas=int(data.get("replicas", 0)),
            keyspaces={
                name: ManagedKeyspace.from_dict(ks)
                for name, ks in (data.get("keyspaces") or {}).items()
            },
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "replicas": self.replicas,
            "keyspaces": {name: ks.to_dict() for name, ks in sorted(self.keyspaces.items())},
        }


@dataclass
class RoleManagerStatus:
    roles: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "RoleManagerStatus":
        return cls(roles=list((data or {}).get("roles") or []))

    def to_dict(self) -> Dict[str, Any]:
        return {"roles": list(self.roles)}


@dataclass
class DataCenterStatus:
    phase: DataCenterPhase = DataCenterPhase.CREATING
    health: Health = Health.RED
    last_message: str = ""
    observed_generation: Optional[int] = None
    zones: List[str] = field(default_factory=list)
    rack_statuses: Dict[int, RackStatus] = field(default_factory=dict)
    ready_replicas: int = 0
    bootstrapped: bool = False
    cql_status: CqlStatus = CqlStatus.NOT_STARTED
    cql_error_message: str = ""
    operation_history: List[Operation] = field(default_factory=list)
    block: BlockStatus = field(default_factory=BlockStatus)
    need_cleanup: bool = False
    need_cleanup_keyspaces: List[str] = field(default_factory=list)
    keyspace_manager: KeyspaceManagerStatus = field(default_factory=KeyspaceManagerStatus)
    role_manager: RoleManagerStatus = field(default_factory=RoleManagerStatus)

    def compute_health(self) -> Health:
        racks = list(self.rack_statuses.values())
        if not racks:
            return Health.RED
        if all(r.compute_health() == Health.GREEN for r in racks):
            return Health.GREEN
        if any(r.ready_replicas > 0 for r in racks):
            return Health.YELLOW
        return Health.RED

    def total_desired_replicas(self) -> int:
        return sum(r.desired_replicas for r in self.rack_statuses.values())

    def sorted_racks(self) -> List[RackStatus]:
        return [self.rack_statuses[i] for i in sorted(self.rack_statuses)]

    def copy(self) -> "DataCenterStatus":
        return copy.deepcopy(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "DataCenterStatus":
        data = data or {}
        return cls(
            phase=DataCenterPhase(data.get("phase", DataCenterPhase.CREATING.value)),
            health=Health(data.get("health", Health.RED.value)),
            last_message=data.get("lastMessage", ""),
            observed_generation=data.get("observedGeneration"),
            zones=list(data.get("zones") or []),
            rack_statuses={
                int(idx): RackStatus.from_dict(rack)
                for idx, rack in (data.get("rackStatuses") or {}).items()
            },
            ready_replicas=int(data.get("readyReplicas", 0)),
            bootstrapped=bool(data.get("bootstrapped", False)),
            cql_status=CqlStatus(data.get("cqlStatus", CqlStatus.NOT_STARTED.value)),
            cql_error_message=data.get("cqlErrorMessage", ""),
            operation_history=[Operation.from_dict(o) for o in data.get("operationHistory") or []],
            block=BlockStatus.from_dict(data.get("block")),
            need_cleanup=bool(data.get("needCleanup", False)),
            need_cleanup_keyspaces=list(data.get("needCleanupKeyspaces") or []),
            keyspace_manager=KeyspaceManagerStatus.from_dict(data.get("keyspaceManagerStatus")),
            role_manager=RoleManagerStatus.from_dict(data.get("roleManagerStatus")),
        )

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "phase": self.phase.value,
            "health": self.health.value,
            "lastMessage": self.last_message,
            "zones": list(self.zones),
            # JSON object keys are strings
            "rackStatuses": {str(i): r.to_dict() for i, r in sorted(self.rack_statuses.items())},
            "readyReplicas": self.ready_replicas,
            "bootstrapped": self.bootstrapped,
            "cqlStatus": self.cql_status.value,
            "cqlErrorMessage": self.cql_error_message,
            "operationHistory": [o.to_dict() for o in self.operation_history],
            "block": self.block.to_dict(),
            "needCleanup": self.need_cleanup,
            "needCleanupKeyspaces": list(self.need_cleanup_keyspaces),
            "keyspaceManagerStatus": self.keyspace_manager.to_dict(),
            "roleManagerStatus": self.role_manager.to_dict(),
        }
        if self.observed_generation is not None:
            body["observedGeneration"] = self.observed_generation
        return body


class DataCenter(BaseCustomResource):
    group = CRD_GROUP
    version = CRD_VERSION
    plural = CRD_PLURAL_DATACENTER
    kind = CRD_KIND_DATACENTER

    metadata: ObjectMeta
    spec: DataCenterSpec
    status: DataCenterStatus

    def __init__(
        self,
        metadata: ObjectMeta,
        spec: Any,
        status: Any = None,
        api: Optional[client.CustomObjectsApi] = None,
    ) -> None:
        super().__init__(api)
        self.metadata = metadata
        self.spec = spec if isinstance(spec, DataCenterSpec) else DataCenterSpec.from_dict(spec)
        self.status = (
            status if isinstance(status, DataCenterStatus) else DataCenterStatus.from_dict(status)
        )

    @property
    def key(self) -> str:
        return f"{self.metadata.namespace}/{self.metadata.name}"

    @property
    def id(self) -> str:
        """Identifier used in log lines."""
        return f"datacenter={self.key}"

    def __repr__(self) -> str:
        return f"DataCenter({self.key})"
