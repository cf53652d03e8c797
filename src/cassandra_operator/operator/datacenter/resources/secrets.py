import uuid
from typing import Any, Dict

from ....crds.const import LABEL_CREDENTIAL
from ....crds.datacenter import DataCenter
from . import names

ADMIN_ROLE = "admin"
DEFAULT_ROLE = "cassandra"
DEFAULT_ROLE_PASSWORD = "cassandra"

KEY_ADMIN_PASSWORD = "cassandra.admin_password"
KEY_CASSANDRA_PASSWORD = "cassandra.cassandra_password"
KEY_SIDECAR_PASSWORD = "sidecar.password"


def build_cluster_secret(dc: DataCenter) -> Dict[str, Any]:
    """
    Builds the cluster credentials Secret with freshly generated passwords.

    The Secret is only ever created, never patched: once a password is in
    use by the cluster, rewriting it would lock the operator out.
    """
    labels = names.cluster_labels(dc)
    labels[LABEL_CREDENTIAL] = "true"
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "type": "Opaque",
        "metadata": {
            "name": names.cluster_secret(dc.spec),
            "namespace": dc.metadata.namespace,
            "labels": labels,
        },
        "stringData": {
            KEY_ADMIN_PASSWORD: str(uuid.uuid4()),
            KEY_CASSANDRA_PASSWORD: str(uuid.uuid4()),
            KEY_SIDECAR_PASSWORD: str(uuid.uuid4()),
        },
    }
