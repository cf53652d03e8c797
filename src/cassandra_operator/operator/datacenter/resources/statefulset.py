from typing import Any, Dict, List

from ....crds.const import ANNOTATION_FINGERPRINT, NODE_ZONE_LABEL
from ....crds.datacenter import DataCenter
from . import names

DEFAULT_STORAGE_SIZE = "10Gi"
CASSANDRA_CONFIG_DIR = "/etc/cassandra"


def _config_volumes(dc: DataCenter, rack_index: int) -> List[Dict[str, Any]]:
    spec = dc.spec
    volumes = [
        {"name": "operator-config", "configMap": {"name": names.operator_configmap(spec)}},
        {"name": "rack-config", "configMap": {"name": names.rack_configmap(spec, rack_index)}},
        {"name": "seed-config", "configMap": {"name": names.seed_configmap(spec)}},
    ]
    if spec.user_config_map_name:
        volumes.append({"name": "user-config", "configMap": {"name": names.user_configmap(spec)}})
    return volumes


def _config_mounts(dc: DataCenter) -> List[Dict[str, Any]]:
    mounts = [
        {"name": "data", "mountPath": "/var/lib/cassandra"},
        {"name": "operator-config", "mountPath": f"{CASSANDRA_CONFIG_DIR}/operator", "readOnly": True},
        {"name": "rack-config", "mountPath": f"{CASSANDRA_CONFIG_DIR}/rack", "readOnly": True},
        {"name": "seed-config", "mountPath": f"{CASSANDRA_CONFIG_DIR}/seeds", "readOnly": True},
    ]
    if dc.spec.user_config_map_name:
        mounts.append({"name": "user-config", "mountPath": f"{CASSANDRA_CONFIG_DIR}/user", "readOnly": True})
    return mounts


def build_rack_statefulset(
    dc: DataCenter,
    zone: str,
    rack_index: int,
    replicas: int,
    fingerprint: str,
    default_image: str,
    sidecar_image: str,
) -> Dict[str, Any]:
    """Builds the StatefulSet of one rack, pinned to its availability zone."""
    spec = dc.spec
    labels = names.rack_labels(dc, zone, rack_index)
    image = spec.image or default_image

    ports = [
        {"name": "cql", "containerPort": spec.native_port},
        {"name": "internode", "containerPort": 7000},
        {"name": "jmx", "containerPort": 7199},
    ]
    if spec.search.enabled:
        ports.append({"name": "elasticsearch", "containerPort": 9200})

    pod_spec: Dict[str, Any] = {
        "affinity": {
            "nodeAffinity": {
                "requiredDuringSchedulingIgnoredDuringExecution": {
                    "nodeSelectorTerms": [
                        {
                            "matchExpressions": [
                                {"key": NODE_ZONE_LABEL, "operator": "In", "values": [zone]}
                            ]
                        }
                    ]
                }
            },
            # one node per k8s node, zone capacity is counted in nodes
            "podAntiAffinity": {
                "requiredDuringSchedulingIgnoredDuringExecution": [
                    {
                        "topologyKey": "kubernetes.io/hostname",
                        "labelSelector": {"matchLabels": names.datacenter_labels(dc)},
                    }
                ]
            },
        },
        "containers": [
            {
                "name": "cassandra",
                "image": image,
                "ports": ports,
                "env": [
                    {"name": "CASSANDRA_CLUSTER_NAME", "value": spec.cluster_name},
                    {"name": "CASSANDRA_DC", "value": spec.datacenter_name},
                    {"name": "CASSANDRA_RACK", "value": zone},
                    {"name": "CASSANDRA_ENABLE_SEARCH", "value": str(spec.search.enabled).lower()},
                ],
                "volumeMounts": _config_mounts(dc),
                "readinessProbe": {
                    "tcpSocket": {"port": spec.native_port},
                    "initialDelaySeconds": 15,
                    "periodSeconds": 10,
                },
            },
            {
                "name": "sidecar",
                "image": sidecar_image,
                "ports": [{"name": "sidecar", "containerPort": spec.sidecar_port}],
                "volumeMounts": [{"name": "data", "mountPath": "/var/lib/cassandra"}],
            },
        ],
        "volumes": _config_volumes(dc, rack_index),
    }
    if spec.resources:
        pod_spec["containers"][0]["resources"] = spec.resources

    storage = spec.storage or {}
    claim_spec: Dict[str, Any] = {
        "accessModes": ["ReadWriteOnce"],
        "resources": {"requests": {"storage": storage.get("size", DEFAULT_STORAGE_SIZE)}},
    }
    if storage.get("storageClassName"):
        claim_spec["storageClassName"] = storage["storageClassName"]

    return {
        "apiVersion": "apps/v1",
        "kind": "StatefulSet",
        "metadata": {
            "name": names.rack_statefulset(spec, rack_index),
            "namespace": dc.metadata.namespace,
            "labels": labels,
        },
        "spec": {
            "replicas": replicas,
            "serviceName": names.nodes_service(spec),
            "podManagementPolicy": "OrderedReady",
            "updateStrategy": {"type": "RollingUpdate"},
            "selector": {"matchLabels": labels},
            "template": {
                "metadata": {
                    "labels": labels,
                    "annotations": {ANNOTATION_FINGERPRINT: fingerprint},
                },
                "spec": pod_spec,
            },
            "volumeClaimTemplates": [
                {
                    "metadata": {"name": "data", "labels": names.datacenter_labels(dc)},
                    "spec": claim_spec,
                }
            ],
        },
    }
