"""
Availability zone topology and replica placement.

Zones are rebuilt on every reconciliation pass from the node zone labels and
the rack StatefulSets; nothing here is persisted except the ordered list of
zone names returned by ``Zones.register``.
"""
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from ...crds.const import ANNOTATION_FINGERPRINT, LABEL_RACK, LABEL_RACK_INDEX
from ...utils.kube import get_field


@dataclass(frozen=True)
class RackDeployment:
    """Snapshot of the StatefulSet backing one rack."""

    name: str
    zone: str
    rack_index: int
    replicas: int
    status_replicas: int = 0
    ready_replicas: int = 0
    updated_replicas: Optional[int] = None
    current_revision: Optional[str] = None
    update_revision: Optional[str] = None
    fingerprint: Optional[str] = None

    @classmethod
    def from_statefulset(cls, sts: Any) -> "RackDeployment":
        labels = get_field(sts, "metadata", "labels", default={})
        annotations = get_field(sts, "spec", "template", "metadata", "annotations", default={})
        return cls(
            name=get_field(sts, "metadata", "name"),
            zone=labels[LABEL_RACK],
            rack_index=int(labels[LABEL_RACK_INDEX]),
            replicas=get_field(sts, "spec", "replicas", default=0),
            status_replicas=get_field(sts, "status", "replicas", default=0),
            ready_replicas=get_field(sts, "status", "ready_replicas", default=0),
            updated_replicas=get_field(sts, "status", "updated_replicas"),
            current_revision=get_field(sts, "status", "current_revision"),
            update_revision=get_field(sts, "status", "update_revision"),
            fingerprint=annotations.get(ANNOTATION_FINGERPRINT),
        )

    def is_up_to_date(self) -> bool:
        """No rolling update is pending on the StatefulSet."""
        updated = self.status_replicas if self.updated_replicas is None else self.updated_replicas
        revision_settled = (
            not self.update_revision or self.update_revision == self.current_revision
        )
        return revision_settled and updated == self.status_replicas


@dataclass
class Zone:
    name: str
    size: int = 0  # number of k8s nodes in the zone
    deployment: Optional[RackDeployment] = None

    def replicas(self) -> int:
        return self.deployment.replicas if self.deployment else 0

    def ready_replicas(self) -> int:
        return self.deployment.ready_replicas if self.deployment else 0

    def free_node_count(self) -> int:
        return self.size - self.replicas()

    def is_ready(self) -> bool:
        if self.deployment is None:
            return True
        return self.deployment.replicas == self.deployment.ready_replicas and (
            not self.deployment.update_revision
            or self.deployment.update_revision == self.deployment.current_revision
        )

    def is_updating(self) -> bool:
        return self.deployment is not None and not self.deployment.is_up_to_date()

    def scale_key(self) -> Tuple[int, int, str]:
        # fewest replicas, then most free nodes, then zone name
        return (self.replicas(), -self.free_node_count(), self.name)


class Zones:
    """Zones sorted by name, with their capacity and current allocation."""

    def __init__(
        self,
        node_zones: Iterable[Optional[str]],
        deployments: Iterable[RackDeployment] = (),
    ) -> None:
        by_zone: Dict[str, RackDeployment] = {d.zone: d for d in deployments}
        zone_map: Dict[str, Zone] = {}
        for zone_name in node_zones:
            # nodes without a zone label can't host a rack
            if not zone_name:
                continue
            zone = zone_map.setdefault(zone_name, Zone(zone_name, deployment=by_zone.get(zone_name)))
            zone.size += 1
        self.zone_map: Dict[str, Zone] = dict(sorted(zone_map.items()))

    def __iter__(self) -> Iterator[Zone]:
        return iter(self.zone_map.values())

    def __len__(self) -> int:
        return len(self.zone_map)

    def get(self, name: str) -> Optional[Zone]:
        return self.zone_map.get(name)

    def deployments(self) -> List[RackDeployment]:
        return [z.deployment for z in self if z.deployment is not None]

    def deployment_for_rack(self, zone_name: str) -> Optional[RackDeployment]:
        zone = self.zone_map.get(zone_name)
        return zone.deployment if zone else None

    def register(self, known_zones: List[str]) -> List[str]:
        """
        Returns ``known_zones`` extended with the zones seen for the first time.

        Existing entries are never moved, so a zone keeps its rack index for
        the lifetime of the datacenter even when nodes come and go.
        """
        registered = list(known_zones)
        for name in self.zone_map:
            if name not in registered:
                registered.append(name)
        return registered

    def total_nodes(self) -> int:
        return sum(z.size for z in self)

    def total_replicas(self) -> int:
        return sum(z.replicas() for z in self)

    def total_ready_replicas(self) -> int:
        return sum(z.ready_replicas() for z in self)

    def next_to_scale_up(self) -> Optional[Zone]:
        if self.total_nodes() == self.total_replicas():
            return None
        candidates = [z for z in self if z.free_node_count() > 0]
        return min(candidates, key=Zone.scale_key, default=None)

    def next_to_scale_down(self) -> Optional[Zone]:
        if self.total_replicas() == 0:
            return None
        candidates = [z for z in self if z.replicas() > 0 or z.deployment is None]
        return max(candidates, key=Zone.scale_key, default=None)

    def is_ready(self) -> bool:
        return all(z.is_ready() for z in self)
