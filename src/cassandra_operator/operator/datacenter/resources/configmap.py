import hashlib
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import yaml

from ....crds.datacenter import Authentication, DataCenter, DataCenterSpec
from . import names

# spec fields that do not change the pod template
_FINGERPRINT_EXCLUDED = ("replicas", "parked", "keyspaces", "decommissionPolicy")


def _configmap(dc: DataCenter, name: str, data: Dict[str, str]) -> Dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {
            "name": name,
            "namespace": dc.metadata.namespace,
            "labels": names.datacenter_labels(dc),
        },
        "data": data,
    }


def build_operator_configmap(dc: DataCenter) -> Dict[str, Any]:
    """Builds the cassandra.yaml fragment computed from the DataCenter spec."""
    spec = dc.spec
    cassandra_yaml: Dict[str, Any] = {
        "cluster_name": spec.cluster_name,
        "endpoint_snitch": "GossipingPropertyFileSnitch",
        "native_transport_port": spec.native_port,
        "num_tokens": 16,
    }
    if spec.authentication == Authentication.NONE:
        cassandra_yaml["authenticator"] = "AllowAllAuthenticator"
        cassandra_yaml["authorizer"] = "AllowAllAuthorizer"
    else:
        cassandra_yaml["authenticator"] = "PasswordAuthenticator"
        cassandra_yaml["authorizer"] = "CassandraAuthorizer"
    if spec.ssl:
        cassandra_yaml["client_encryption_options"] = {"enabled": True, "optional": False}
        cassandra_yaml["server_encryption_options"] = {"internode_encryption": "all"}

    data = {"cassandra.yaml.d/001-operator.yaml": yaml.safe_dump(cassandra_yaml, sort_keys=True)}
    if spec.search.enabled:
        data["elasticsearch.yml"] = yaml.safe_dump(
            {"http.port": 9200, "cluster.name": spec.cluster_name}, sort_keys=True
        )
    return _configmap(dc, names.operator_configmap(spec), data)


def build_rack_configmap(dc: DataCenter, zone: str, rack_index: int) -> Dict[str, Any]:
    """Builds the per-rack snitch properties."""
    properties = f"dc={dc.spec.datacenter_name}\nrack={zone}\nprefer_local=true\n"
    configmap = _configmap(
        dc,
        names.rack_configmap(dc.spec, rack_index),
        {"cassandra-rackdc.properties": properties},
    )
    configmap["metadata"]["labels"] = names.rack_labels(dc, zone, rack_index)
    return configmap


def build_seed_configmap(dc: DataCenter, remote_seeds: Optional[List[str]] = None) -> Dict[str, Any]:
    """
    Builds the seed list ConfigMap.

    Seeds are read by the nodes at startup only, so this ConfigMap is left out
    of the fingerprint: updating it never triggers a rolling restart.
    """
    namespace = dc.metadata.namespace
    seeds = [f"{names.seed_service(dc.spec)}.{namespace}.svc.cluster.local"]
    seeds.extend(remote_seeds or [])
    return _configmap(dc, names.seed_configmap(dc.spec), {"seeds": ",".join(seeds)})


def build_user_configmap(dc: DataCenter, user_data: Dict[str, str]) -> Dict[str, Any]:
    """Copies the user supplied ConfigMap so that its content is part of the fingerprint."""
    return _configmap(dc, names.user_configmap(dc.spec), dict(user_data))


def configmap_fingerprint(configmap: Dict[str, Any]) -> str:
    content = {
        "data": configmap.get("data") or {},
        "binaryData": configmap.get("binaryData") or {},
    }
    digest = hashlib.sha1(json.dumps(content, sort_keys=True).encode("utf-8"))
    return digest.hexdigest()[:7]


def spec_fingerprint(spec: DataCenterSpec) -> str:
    body = spec.to_dict()
    for key in _FINGERPRINT_EXCLUDED:
        body.pop(key, None)
    digest = hashlib.sha1(json.dumps(body, sort_keys=True).encode("utf-8"))
    return digest.hexdigest()[:7]


@dataclass
class DataCenterConfig:
    """The ConfigMaps shared by every rack and the fingerprint they produce."""

    operator_configmap: Dict[str, Any]
    seed_configmap: Dict[str, Any]
    user_configmap: Optional[Dict[str, Any]] = None
    fingerprint: str = ""

    def shared_configmaps(self) -> List[Dict[str, Any]]:
        configmaps = [self.operator_configmap, self.seed_configmap]
        if self.user_configmap is not None:
            configmaps.append(self.user_configmap)
        return configmaps


def render_datacenter_config(
    dc: DataCenter, user_data: Optional[Dict[str, str]] = None
) -> DataCenterConfig:
    operator_cm = build_operator_configmap(dc)
    user_cm = build_user_configmap(dc, user_data) if user_data is not None else None

    merged: Dict[str, Any] = {"data": dict(operator_cm["data"])}
    if user_cm is not None:
        merged["data"].update({f"user/{k}": v for k, v in user_cm["data"].items()})

    return DataCenterConfig(
        operator_configmap=operator_cm,
        seed_configmap=build_seed_configmap(dc),
        user_configmap=user_cm,
        fingerprint=f"{spec_fingerprint(dc.spec)}-{configmap_fingerprint(merged)}",
    )
