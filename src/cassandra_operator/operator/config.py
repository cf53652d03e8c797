import logging
import os

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "/etc/cassandra-operator/config.yaml"
DEFAULT_RECONCILE_INTERVAL = 10
DEFAULT_WORKER_LIMIT = 4
DEFAULT_POSTING_ENABLED = False
DEFAULT_OPERATION_HISTORY_DEPTH = 16
DEFAULT_IMAGE = "strapdata/elassandra:6.8.4.13"
DEFAULT_SIDECAR_IMAGE = "strapdata/elassandra-operator-sidecar:latest"
DEFAULT_STATEFULSET_CACHE_TTL = 30
DEFAULT_SCHEMA_AGREEMENT_ATTEMPTS = 20
DEFAULT_SCHEMA_AGREEMENT_DELAY = 6
DEFAULT_DECOMMISSION_ATTEMPTS = 5
DEFAULT_DECOMMISSION_DELAY = 2
DEFAULT_SIDECAR_TIMEOUT = 30


class OperatorConfig:
    def __init__(self):
        self.config_path = os.environ.get(
            "CASSANDRA_OPERATOR_CONFIG_PATH", DEFAULT_CONFIG_PATH
        )
        self._config = self._load_config()

        def get_bool(value):
            return str(value).lower() in ("true", "1", "t")

        self.reconcile_interval = self._get_value(
            "CASSANDRA_OPERATOR_RECONCILE_INTERVAL",
            "reconcileInterval",
            DEFAULT_RECONCILE_INTERVAL,
            caster=int,
        )
        self.worker_limit = self._get_value(
            "CASSANDRA_OPERATOR_WORKER_LIMIT",
            "workerLimit",
            DEFAULT_WORKER_LIMIT,
            caster=int,
        )
        self.posting_enabled = self._get_value(
            "CASSANDRA_OPERATOR_POSTING_ENABLED",
            "postingEnabled",
            DEFAULT_POSTING_ENABLED,
            caster=get_bool,
        )
        self.operation_history_depth = self._get_value(
            "CASSANDRA_OPERATOR_OPERATION_HISTORY_DEPTH",
            "operationHistoryDepth",
            DEFAULT_OPERATION_HISTORY_DEPTH,
            caster=int,
        )
        self.default_image = self._get_value(
            "CASSANDRA_OPERATOR_DEFAULT_IMAGE",
            "defaultImage",
            DEFAULT_IMAGE,
        )
        self.sidecar_image = self._get_value(
            "CASSANDRA_OPERATOR_SIDECAR_IMAGE",
            "sidecarImage",
            DEFAULT_SIDECAR_IMAGE,
        )
        self.statefulset_cache_ttl = self._get_value(
            "CASSANDRA_OPERATOR_STATEFULSET_CACHE_TTL",
            "statefulSetCacheTtl",
            DEFAULT_STATEFULSET_CACHE_TTL,
            caster=float,
        )
        self.schema_agreement_attempts = self._get_value(
            "CASSANDRA_OPERATOR_SCHEMA_AGREEMENT_ATTEMPTS",
            "schemaAgreementAttempts",
            DEFAULT_SCHEMA_AGREEMENT_ATTEMPTS,
            caster=int,
        )
        self.schema_agreement_delay = self._get_value(
            "CASSANDRA_OPERATOR_SCHEMA_AGREEMENT_DELAY",
            "schemaAgreementDelay",
            DEFAULT_SCHEMA_AGREEMENT_DELAY,
            caster=float,
        )
        self.decommission_attempts = self._get_value(
            "CASSANDRA_OPERATOR_DECOMMISSION_ATTEMPTS",
            "decommissionAttempts",
            DEFAULT_DECOMMISSION_ATTEMPTS,
            caster=int,
        )
        self.decommission_delay = self._get_value(
            "CASSANDRA_OPERATOR_DECOMMISSION_DELAY",
            "decommissionDelay",
            DEFAULT_DECOMMISSION_DELAY,
            caster=float,
        )
        self.sidecar_timeout = self._get_value(
            "CASSANDRA_OPERATOR_SIDECAR_TIMEOUT",
            "sidecarTimeout",
            DEFAULT_SIDECAR_TIMEOUT,
            caster=float,
        )

    def _get_value(self, env_key, yaml_key, default, caster=None):
        val = os.environ.get(env_key, self._config.get(yaml_key, default))
        if caster:
            return caster(val)
        return val

    def _load_config(self):
        try:
            with open(self.config_path, "r") as f:
                config_data = yaml.safe_load(f)
                logger.info(f"Loaded operator configuration from {self.config_path}")
                return config_data if config_data else {}
        except FileNotFoundError:
            logger.info(
                f"Operator config file not found at {self.config_path}, using default values."
            )
            return {}
        except (OSError, yaml.YAMLError) as e:
            logger.error(
                f"Error loading operator configuration from {self.config_path}: {e}"
            )
            return {}


# Global config instance to be used across the operator
config = OperatorConfig()
