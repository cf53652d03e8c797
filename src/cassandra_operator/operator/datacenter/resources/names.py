"""
Names and labels of the Kubernetes objects owned by a DataCenter.
"""
from typing import Dict

from ....crds.const import (
    LABEL_APP,
    LABEL_APP_VALUE,
    LABEL_CLUSTER,
    LABEL_DATACENTER,
    LABEL_MANAGED_BY,
    LABEL_MANAGED_BY_VALUE,
    LABEL_PARENT,
    LABEL_RACK,
    LABEL_RACK_INDEX,
)
from ....crds.datacenter import DataCenter, DataCenterSpec


def datacenter_resource(spec: DataCenterSpec) -> str:
    return f"elassandra-{spec.cluster_name}-{spec.datacenter_name}"


def rack_statefulset(spec: DataCenterSpec, rack_index: int) -> str:
    return f"{datacenter_resource(spec)}-{rack_index}"


def nodes_service(spec: DataCenterSpec) -> str:
    return datacenter_resource(spec)


def seed_service(spec: DataCenterSpec) -> str:
    return f"{datacenter_resource(spec)}-seeds"


def search_service(spec: DataCenterSpec) -> str:
    return f"{datacenter_resource(spec)}-elasticsearch"


def operator_configmap(spec: DataCenterSpec) -> str:
    return f"{datacenter_resource(spec)}-operator-config"


def rack_configmap(spec: DataCenterSpec, rack_index: int) -> str:
    return f"{datacenter_resource(spec)}-rack-config-{rack_index}"


def seed_configmap(spec: DataCenterSpec) -> str:
    return f"{datacenter_resource(spec)}-seed-config"


def user_configmap(spec: DataCenterSpec) -> str:
    return f"{datacenter_resource(spec)}-user-config"


def cluster_secret(spec: DataCenterSpec) -> str:
    # shared by every datacenter of the cluster
    return f"elassandra-{spec.cluster_name}"


def datacenter_labels(dc: DataCenter) -> Dict[str, str]:
    return {
        LABEL_MANAGED_BY: LABEL_MANAGED_BY_VALUE,
        LABEL_APP: LABEL_APP_VALUE,
        LABEL_PARENT: dc.metadata.name,
        LABEL_CLUSTER: dc.spec.cluster_name,
        LABEL_DATACENTER: dc.spec.datacenter_name,
    }


def cluster_labels(dc: DataCenter) -> Dict[str, str]:
    return {
        LABEL_MANAGED_BY: LABEL_MANAGED_BY_VALUE,
        LABEL_APP: LABEL_APP_VALUE,
        LABEL_CLUSTER: dc.spec.cluster_name,
    }


def rack_labels(dc: DataCenter, zone: str, rack_index: int) -> Dict[str, str]:
    labels = datacenter_labels(dc)
    labels[LABEL_RACK] = zone
    labels[LABEL_RACK_INDEX] = str(rack_index)
    return labels


def pod_name(spec: DataCenterSpec, rack_index: int, ordinal: int) -> str:
    return f"{rack_statefulset(spec, rack_index)}-{ordinal}"
