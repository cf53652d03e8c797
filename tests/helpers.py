"""
Builders and fakes shared by the unit tests.
"""
import re
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from cassandra_operator.crds.base import ObjectMeta
from cassandra_operator.crds.const import ANNOTATION_FINGERPRINT, LABEL_RACK, LABEL_RACK_INDEX
from cassandra_operator.crds.datacenter import DataCenter
from cassandra_operator.crds.errors import CqlConnectionError
from cassandra_operator.operator.datacenter.zones import RackDeployment

NAMESPACE = "test-ns"
DC_NAME = "dc1"
FINGERPRINT = "abc1234-def5678"


def datacenter_spec(**overrides: Any) -> Dict[str, Any]:
    spec: Dict[str, Any] = {
        "clusterName": "cl1",
        "datacenterName": DC_NAME,
        "replicas": 1,
    }
    spec.update(overrides)
    return spec


def make_datacenter(
    status: Optional[Dict[str, Any]] = None,
    name: str = DC_NAME,
    generation: int = 1,
    **spec_overrides: Any,
) -> DataCenter:
    return DataCenter(
        metadata=ObjectMeta(
            name=name, namespace=NAMESPACE, generation=generation, resource_version="1"
        ),
        spec=datacenter_spec(**spec_overrides),
        status=status or {},
        api=object(),
    )


def statefulset(
    zone: str,
    index: int,
    replicas: int,
    ready: Optional[int] = None,
    fingerprint: str = FINGERPRINT,
    current_revision: str = "rev-1",
    update_revision: str = "rev-1",
) -> Dict[str, Any]:
    """A StatefulSet as returned by the API, in its camelCase dict form."""
    ready = replicas if ready is None else ready
    return {
        "metadata": {
            "name": f"elassandra-cl1-{DC_NAME}-{index}",
            "labels": {LABEL_RACK: zone, LABEL_RACK_INDEX: str(index)},
        },
        "spec": {
            "replicas": replicas,
            "template": {"metadata": {"annotations": {ANNOTATION_FINGERPRINT: fingerprint}}},
        },
        "status": {
            "replicas": replicas,
            "readyReplicas": ready,
            "currentReplicas": replicas,
            "updatedReplicas": replicas,
            "currentRevision": current_revision,
            "updateRevision": update_revision,
        },
    }


def deployment(*args: Any, **kwargs: Any) -> RackDeployment:
    return RackDeployment.from_statefulset(statefulset(*args, **kwargs))


class FakeSession:
    """
    In-memory stand-in for a CQL session.

    Keeps one replication map per keyspace and applies the ALTER and CREATE
    statements it receives to it.
    """

    _ENTRY = re.compile(r"'([^']+)': (\d+)")
    _NAME = re.compile(r'KEYSPACE (?:IF NOT EXISTS )?"([^"]+)"')

    def __init__(self, keyspaces: Optional[Dict[str, Dict[str, int]]] = None) -> None:
        self.keyspaces: Dict[str, Dict[str, int]] = {k: dict(v) for k, v in (keyspaces or {}).items()}
        self.statements: List[Tuple[str, Optional[Sequence[Any]]]] = []
        # scripted schema agreement answers, True once exhausted
        self.agreement: List[bool] = []
        # keyspaces whose ALTER never reaches schema agreement
        self.disagree_on: Set[str] = set()
        # connectivity is lost on the first statement touching this keyspace
        self.lose_connection_on: Optional[str] = None
        self._last_altered: Optional[str] = None

    @property
    def alters(self) -> List[str]:
        return [q for q, _ in self.statements if q.startswith("ALTER")]

    def rf_history(self, keyspace: str, dc: str = DC_NAME) -> List[int]:
        history = []
        for query in self.alters:
            if self._NAME.search(query).group(1) == keyspace:
                history.append(dict((k, int(v)) for k, v in self._ENTRY.findall(query)).get(dc, 0))
        return history

    async def execute(self, query: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        if self.lose_connection_on and (
            self.lose_connection_on in query or (params and self.lose_connection_on in params)
        ):
            raise CqlConnectionError("connection lost")
        self.statements.append((query, params))
        if query.startswith("SELECT replication"):
            replication = self.keyspaces.get(params[0])
            if replication is None:
                return []
            row = {"class": "org.apache.cassandra.locator.NetworkTopologyStrategy"}
            row.update({dc: str(rf) for dc, rf in replication.items()})
            return [{"replication": row}]
        if query.startswith("ALTER KEYSPACE") or query.startswith("CREATE KEYSPACE"):
            name = self._NAME.search(query).group(1)
            self._last_altered = name
            if query.startswith("CREATE") and name in self.keyspaces:
                return []
            entries = {k: int(v) for k, v in self._ENTRY.findall(query)}
            self.keyspaces[name] = entries
        return []

    async def schema_agreement(self) -> bool:
        if self._last_altered in self.disagree_on:
            return False
        if self.agreement:
            return self.agreement.pop(0)
        return True

    def is_closed(self) -> bool:
        return False

    async def close(self) -> None:
        pass
