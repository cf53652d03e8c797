class OperatorError(Exception):
    """Base class for errors raised by the operator."""


class KubeConfigError(OperatorError):
    """Raised when the Kubernetes client cannot be configured."""


class StatusConflictError(OperatorError):
    """The status update was rejected because the resource version is stale."""


class CqlConnectionError(OperatorError):
    """No usable CQL session could be obtained, or the driver lost connectivity."""


class CqlQueryError(OperatorError):
    """A CQL statement was rejected by the cluster."""


class SchemaAgreementError(OperatorError):
    """The cluster did not reach schema agreement after a DDL statement."""


class KeyspaceReplicationError(OperatorError):
    """A keyspace replication factor could not be converged."""


class NodeControlError(OperatorError):
    """A sidecar node control request failed."""


class DecommissionError(NodeControlError):
    """A node could not be decommissioned after all retries."""


class ReconcilerShutdownError(OperatorError):
    """The reconciliation executor is shutting down."""
