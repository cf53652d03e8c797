"""
Next-action decision for a DataCenter.

``decide`` looks at one snapshot of the persisted status and of the observed
topology and returns the single next action together with the status the
datacenter will have once the action is applied. It performs no I/O and
never mutates its inputs; the executor applies the action afterwards.

The branches are evaluated in a fixed priority order and the first one that
matches wins, so at most one of park, unpark, rolling update, scale up and
scale down is ever selected for a pass.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ...crds.datacenter import (
    DataCenterPhase,
    DataCenterSpec,
    DataCenterStatus,
    Health,
    ProgressState,
    RackStatus,
)
from .resources import names
from .zones import RackDeployment, Zone, Zones


class ActionKind(str, Enum):
    CREATE_RACK = "CREATE_RACK"
    PARK = "PARK"
    UNPARK = "UNPARK"
    PARKED_NOOP = "PARKED_NOOP"
    WAIT_PARKING = "WAIT_PARKING"
    ROLLING_UPDATE = "ROLLING_UPDATE"
    WAIT_ROLLING_UPDATE = "WAIT_ROLLING_UPDATE"
    SCALE_UP = "SCALE_UP"
    SCALE_DOWN = "SCALE_DOWN"
    WAIT_READY = "WAIT_READY"
    MAINTENANCE = "MAINTENANCE"
    NOOP = "NOOP"


MUTATING_ACTIONS = frozenset(
    {
        ActionKind.CREATE_RACK,
        ActionKind.PARK,
        ActionKind.UNPARK,
        ActionKind.ROLLING_UPDATE,
        ActionKind.SCALE_UP,
        ActionKind.SCALE_DOWN,
    }
)


@dataclass(frozen=True)
class Action:
    kind: ActionKind
    zone: Optional[str] = None
    rack_index: Optional[int] = None
    statefulset: Optional[str] = None
    replicas: Optional[int] = None
    # scale down only: pod to decommission and DC size to cap keyspaces to
    decommission_pod: Optional[str] = None
    rf_target_dc_size: Optional[int] = None
    message: str = ""

    @property
    def is_mutating(self) -> bool:
        return self.kind in MUTATING_ACTIONS

    def describe(self) -> str:
        parts = [self.kind.value]
        if self.statefulset:
            parts.append(f"statefulset={self.statefulset}")
        if self.replicas is not None:
            parts.append(f"replicas={self.replicas}")
        if self.decommission_pod:
            parts.append(f"decommission={self.decommission_pod}")
        return " ".join(parts)


@dataclass
class Observation:
    """Topology and configuration observed at the start of a pass."""

    zones: Zones
    fingerprint: str
    generation: Optional[int] = None


@dataclass
class Decision:
    action: Action
    status: DataCenterStatus


def _deployment_ready(deployment: Optional[RackDeployment]) -> bool:
    return (
        deployment is not None
        and deployment.is_up_to_date()
        and deployment.ready_replicas >= deployment.replicas
    )


def _refresh_racks(status: DataCenterStatus, zones: Zones) -> None:
    """Copies the observed StatefulSet state into the rack statuses."""
    by_index = {d.rack_index: d for d in zones.deployments()}
    for index, deployment in by_index.items():
        if index not in status.rack_statuses:
            # rack exists in the cluster but was lost from the status
            status.rack_statuses[index] = RackStatus(
                index=index,
                name=deployment.zone,
                desired_replicas=deployment.replicas,
            )

    for index, rack in status.rack_statuses.items():
        deployment = by_index.get(index)
        if deployment is None:
            rack.ready_replicas = 0
            rack.progress_state = ProgressState.RUNNING
        else:
            rack.ready_replicas = deployment.ready_replicas
            rack.progress_state = (
                ProgressState.RUNNING if deployment.is_up_to_date() else ProgressState.UPDATING
            )
            if deployment.fingerprint:
                rack.fingerprint = deployment.fingerprint
        rack.health = rack.compute_health()


def _rack_for_zone(status: DataCenterStatus, zone: Zone) -> RackStatus:
    index = status.zones.index(zone.name)
    rack = status.rack_statuses.get(index)
    if rack is None:
        rack = RackStatus(index=index, name=zone.name)
        status.rack_statuses[index] = rack
    return rack


def decide(spec: DataCenterSpec, status: DataCenterStatus, observation: Observation) -> Decision:
    status = status.copy()
    zones = observation.zones

    status.zones = zones.register(status.zones)
    _refresh_racks(status, zones)
    status.ready_replicas = sum(r.ready_replicas for r in status.rack_statuses.values())
    status.health = status.compute_health()
    if observation.generation is not None:
        status.observed_generation = observation.generation
    if status.phase == DataCenterPhase.RUNNING and status.ready_replicas > 0:
        status.bootstrapped = True

    action = _next_action(spec, status, observation)
    if action.message:
        status.last_message = action.message
    return Decision(action=action, status=status)


def _next_action(spec: DataCenterSpec, status: DataCenterStatus, observation: Observation) -> Action:
    zones = observation.zones

    # first pass: the datacenter starts with a single node in the first zone
    if not status.rack_statuses:
        first_zone = next(iter(zones), None)
        if first_zone is None:
            return Action(ActionKind.NOOP, message="No node with a zone label is available")
        rack = _rack_for_zone(status, first_zone)
        rack.desired_replicas = 1
        rack.health = Health.RED
        rack.fingerprint = observation.fingerprint
        status.phase = DataCenterPhase.RUNNING
        status.health = Health.RED
        return Action(
            ActionKind.CREATE_RACK,
            zone=first_zone.name,
            rack_index=rack.index,
            statefulset=names.rack_statefulset(spec, rack.index),
            replicas=1,
        )

    if spec.parked and status.phase != DataCenterPhase.PARKED:
        status.phase = DataCenterPhase.PARKED
        return Action(ActionKind.PARK, replicas=0)

    if not spec.parked and status.phase == DataCenterPhase.PARKED:
        status.phase = DataCenterPhase.RUNNING
        return Action(ActionKind.UNPARK)

    if status.phase == DataCenterPhase.PARKED:
        if status.ready_replicas == 0:
            return Action(ActionKind.PARKED_NOOP)
        return Action(ActionKind.WAIT_PARKING)

    status.phase = DataCenterPhase.RUNNING
    racks = status.sorted_racks()

    # a rack whose StatefulSet is gone is recreated at its recorded size,
    # as long as its zone still has nodes
    for rack in racks:
        if zones.get(rack.name) is not None and zones.deployment_for_rack(rack.name) is None:
            rack.fingerprint = observation.fingerprint
            rack.progress_state = ProgressState.RUNNING
            rack.health = rack.compute_health()
            status.health = status.compute_health()
            return Action(
                ActionKind.CREATE_RACK,
                zone=rack.name,
                rack_index=rack.index,
                statefulset=names.rack_statefulset(spec, rack.index),
                replicas=rack.desired_replicas,
                message=f"StatefulSet of rack {rack.index} is missing, recreating it",
            )

    all_racks_ready = all(
        r.progress_state == ProgressState.RUNNING
        and _deployment_ready(zones.deployment_for_rack(r.name))
        for r in racks
    )
    if all_racks_ready:
        for rack in racks:
            if rack.fingerprint != observation.fingerprint:
                deployment = zones.deployment_for_rack(rack.name)
                rack.progress_state = ProgressState.UPDATING
                rack.fingerprint = observation.fingerprint
                return Action(
                    ActionKind.ROLLING_UPDATE,
                    zone=rack.name,
                    rack_index=rack.index,
                    statefulset=names.rack_statefulset(spec, rack.index),
                    replicas=deployment.replicas,
                )

    # a rack in a rolling update keeps counting toward capacity, no scaling
    # decision is made until it settles
    if any(r.progress_state == ProgressState.UPDATING for r in racks):
        return Action(ActionKind.WAIT_ROLLING_UPDATE)

    total_desired = status.total_desired_replicas()
    if total_desired < spec.replicas and status.health == Health.GREEN:
        zone = zones.next_to_scale_up()
        if zone is None:
            return Action(
                ActionKind.NOOP,
                message=f"No zone has free capacity to scale up to {spec.replicas} replicas",
            )
        rack = _rack_for_zone(status, zone)
        statefulset = names.rack_statefulset(spec, rack.index)
        if zone.deployment is None:
            rack.desired_replicas = 1
            rack.fingerprint = observation.fingerprint
            rack.health = rack.compute_health()
            status.health = status.compute_health()
            return Action(
                ActionKind.CREATE_RACK,
                zone=zone.name,
                rack_index=rack.index,
                statefulset=statefulset,
                replicas=1,
            )
        rack.desired_replicas = zone.replicas() + 1
        rack.health = rack.compute_health()
        status.health = status.compute_health()
        return Action(
            ActionKind.SCALE_UP,
            zone=zone.name,
            rack_index=rack.index,
            statefulset=statefulset,
            replicas=rack.desired_replicas,
        )

    if total_desired > spec.replicas and status.health == Health.GREEN:
        zone = zones.next_to_scale_down()
        if zone is None or zone.deployment is None or zone.replicas() == 0:
            return Action(ActionKind.NOOP, message="No replica can be removed to scale down")
        rack = _rack_for_zone(status, zone)
        current = zone.replicas()
        statefulset = names.rack_statefulset(spec, rack.index)
        rack.desired_replicas = current - 1
        decommission_pod = None
        rf_target_dc_size = None
        if status.bootstrapped and total_desired > 1:
            decommission_pod = f"{statefulset}-{current - 1}"
            rf_target_dc_size = total_desired - 1
        return Action(
            ActionKind.SCALE_DOWN,
            zone=zone.name,
            rack_index=rack.index,
            statefulset=statefulset,
            replicas=current - 1,
            decommission_pod=decommission_pod,
            rf_target_dc_size=rf_target_dc_size,
        )

    if not all_racks_ready or status.health != Health.GREEN:
        return Action(ActionKind.WAIT_READY)

    if status.ready_replicas > 0 and status.bootstrapped:
        return Action(ActionKind.MAINTENANCE)
    return Action(ActionKind.NOOP)
