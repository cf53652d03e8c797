from typing import Any, Dict, List

from ....crds.datacenter import DataCenter
from . import names


def _service(dc: DataCenter, name: str, spec: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {
            "name": name,
            "namespace": dc.metadata.namespace,
            "labels": names.datacenter_labels(dc),
        },
        "spec": spec,
    }


def _node_ports(dc: DataCenter) -> List[Dict[str, Any]]:
    return [
        {"name": "cql", "port": dc.spec.native_port, "targetPort": dc.spec.native_port},
        {"name": "sidecar", "port": dc.spec.sidecar_port, "targetPort": dc.spec.sidecar_port},
    ]


def build_nodes_service(dc: DataCenter) -> Dict[str, Any]:
    """Builds the headless Service giving every node a stable DNS name."""
    return _service(
        dc,
        names.nodes_service(dc.spec),
        {
            "clusterIP": "None",
            "selector": names.datacenter_labels(dc),
            "ports": _node_ports(dc),
        },
    )


def build_seed_service(dc: DataCenter) -> Dict[str, Any]:
    """Builds the seed Service, which resolves to nodes before they are ready."""
    return _service(
        dc,
        names.seed_service(dc.spec),
        {
            "clusterIP": "None",
            "publishNotReadyAddresses": True,
            "selector": names.datacenter_labels(dc),
            "ports": [{"name": "internode", "port": 7000, "targetPort": 7000}],
        },
    )


def build_search_service(dc: DataCenter) -> Dict[str, Any]:
    return _service(
        dc,
        names.search_service(dc.spec),
        {
            "type": "ClusterIP",
            "selector": names.datacenter_labels(dc),
            "ports": [{"name": "elasticsearch", "port": 9200, "targetPort": 9200}],
        },
    )


def build_datacenter_services(dc: DataCenter) -> List[Dict[str, Any]]:
    return [build_nodes_service(dc), build_seed_service(dc)]
