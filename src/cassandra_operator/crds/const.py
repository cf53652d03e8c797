CRD_GROUP = "cassandra.operator.io"
CRD_VERSION = "v1"
CRD_PLURAL_DATACENTER = "datacenters"
CRD_KIND_DATACENTER = "DataCenter"

# Labels put on every object the operator owns
LABEL_MANAGED_BY = "app.kubernetes.io/managed-by"
LABEL_MANAGED_BY_VALUE = "cassandra-operator"
LABEL_APP = "app"
LABEL_APP_VALUE = "cassandra"
LABEL_PARENT = f"{CRD_GROUP}/parent"
LABEL_CLUSTER = f"{CRD_GROUP}/cluster"
LABEL_DATACENTER = f"{CRD_GROUP}/datacenter"
LABEL_RACK = f"{CRD_GROUP}/rack"
LABEL_RACK_INDEX = f"{CRD_GROUP}/rack-index"
LABEL_CREDENTIAL = f"{CRD_GROUP}/credential"

ANNOTATION_FINGERPRINT = f"{CRD_GROUP}/datacenter-fingerprint"

NODE_ZONE_LABEL = "topology.kubernetes.io/zone"
