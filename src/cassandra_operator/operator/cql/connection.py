"""
CQL sessions, one per DataCenter, cached for the lifetime of the RUNNING phase.
"""
import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from cassandra import DriverException, OperationTimedOut
from cassandra.auth import PlainTextAuthProvider
from cassandra.cluster import Cluster, NoHostAvailable
from cassandra.policies import DCAwareRoundRobinPolicy
from cassandra.query import dict_factory

from ...crds.datacenter import Authentication, CqlStatus, DataCenter, DataCenterStatus
from ...crds.errors import CqlConnectionError, CqlQueryError
from ..datacenter.resources import names
from ..datacenter.resources.secrets import (
    ADMIN_ROLE,
    DEFAULT_ROLE,
    DEFAULT_ROLE_PASSWORD,
    KEY_ADMIN_PASSWORD,
)

Row = Dict[str, Any]


class CqlSession:
    """Async facade over a driver session; rows are returned as dicts."""

    def __init__(self, cluster: Cluster, session: Any) -> None:
        self._cluster = cluster
        self._session = session
        self._session.row_factory = dict_factory

    async def execute(self, query: str, params: Optional[Sequence[Any]] = None) -> List[Row]:
        try:
            result = await asyncio.to_thread(self._session.execute, query, params)
        except (NoHostAvailable, OperationTimedOut) as e:
            raise CqlConnectionError(str(e)) from e
        except DriverException as e:
            raise CqlQueryError(f"{query!r} failed: {e}") from e
        return list(result)

    async def schema_agreement(self) -> bool:
        """True when every node reports the same schema version."""
        local = await self.execute("SELECT schema_version FROM system.local")
        peers = await self.execute("SELECT schema_version FROM system.peers")
        versions = {row["schema_version"] for row in local + peers if row.get("schema_version")}
        return len(versions) == 1

    def is_closed(self) -> bool:
        return self._cluster.is_shutdown

    async def close(self) -> None:
        await asyncio.to_thread(self._cluster.shutdown)


class CqlConnectionManager:
    def __init__(self, store, cluster_factory: Callable[..., Cluster] = Cluster) -> None:
        self._store = store
        self._cluster_factory = cluster_factory
        self._sessions: Dict[str, CqlSession] = {}
        self._lock = asyncio.Lock()

    async def get_or_create_session(
        self, dc: DataCenter, status: DataCenterStatus, logger: logging.Logger
    ) -> CqlSession:
        """
        Returns the cached session of ``dc`` or connects a new one.

        The outcome is recorded in ``status.cql_status``. Raises
        ``CqlConnectionError`` when no credential could connect.
        """
        async with self._lock:
            session = self._sessions.get(dc.key)
            if session is not None and session.is_closed():
                logger.info(f"{dc.id} CQL session was closed, reconnecting")
                del self._sessions[dc.key]
                session = None
        if session is not None:
            return session

        try:
            session = await self._connect(dc, logger)
        except CqlConnectionError as e:
            status.cql_status = CqlStatus.ERRORED
            status.cql_error_message = str(e)
            raise

        status.cql_status = CqlStatus.ESTABLISHED
        status.cql_error_message = ""
        async with self._lock:
            self._sessions[dc.key] = session
        return session

    async def evict(self, key: str) -> None:
        async with self._lock:
            session = self._sessions.pop(key, None)
        if session is not None:
            await session.close()

    async def close_all(self) -> None:
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            await session.close()

    def __contains__(self, key: str) -> bool:
        return key in self._sessions

    async def _credentials(self, dc: DataCenter) -> List[Optional[Tuple[str, str]]]:
        if dc.spec.authentication == Authentication.NONE:
            return [None]
        secret = await self._store.read_secret_data(
            dc.metadata.namespace, names.cluster_secret(dc.spec)
        )
        candidates: List[Optional[Tuple[str, str]]] = []
        if secret.get(KEY_ADMIN_PASSWORD):
            candidates.append((ADMIN_ROLE, secret[KEY_ADMIN_PASSWORD]))
        # the default role is only usable until the admin role is created
        candidates.append((DEFAULT_ROLE, DEFAULT_ROLE_PASSWORD))
        return candidates

    async def _connect(self, dc: DataCenter, logger: logging.Logger) -> CqlSession:
        contact_point = f"{names.nodes_service(dc.spec)}.{dc.metadata.namespace}.svc.cluster.local"
        errors = []
        for credentials in await self._credentials(dc):
            auth_provider = (
                PlainTextAuthProvider(username=credentials[0], password=credentials[1])
                if credentials
                else None
            )
            cluster = self._cluster_factory(
                contact_points=[contact_point],
                port=dc.spec.native_port,
                auth_provider=auth_provider,
                load_balancing_policy=DCAwareRoundRobinPolicy(local_dc=dc.spec.datacenter_name),
            )
            try:
                session = await asyncio.to_thread(cluster.connect)
            except (NoHostAvailable, OperationTimedOut, DriverException) as e:
                role = credentials[0] if credentials else "anonymous"
                logger.warning(f"{dc.id} CQL connection as role '{role}' failed: {e}")
                errors.append(str(e))
                await asyncio.to_thread(cluster.shutdown)
                continue
            logger.info(f"{dc.id} CQL session established to {contact_point}")
            return CqlSession(cluster, session)
        raise CqlConnectionError(f"Unable to connect to {contact_point}: {'; '.join(errors)}")
