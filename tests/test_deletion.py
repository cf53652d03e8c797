from unittest.mock import AsyncMock

import pytest

from cassandra_operator.crds.const import LABEL_PARENT
from cassandra_operator.crds.datacenter import CqlStatus, DataCenterPhase, DataCenterStatus
from cassandra_operator.crds.errors import CqlConnectionError
from cassandra_operator.operator.cql.connection import CqlConnectionManager
from cassandra_operator.operator.cql.keyspaces import KeyspaceManager
from cassandra_operator.operator.datacenter.deletion import DataCenterDeletion
from tests.helpers import NAMESPACE, make_datacenter


@pytest.fixture
def deletion(mock_store, mock_cache):
    return DataCenterDeletion(
        mock_store,
        mock_cache,
        AsyncMock(spec=CqlConnectionManager),
        AsyncMock(spec=KeyspaceManager),
    )


def _established() -> DataCenterStatus:
    return DataCenterStatus(phase=DataCenterPhase.RUNNING, cql_status=CqlStatus.ESTABLISHED)


@pytest.mark.asyncio
async def test_delete_removes_owned_objects(deletion, mock_store, mock_cache, logger):
    dc = make_datacenter()

    await deletion.delete(dc, logger)

    for delete in (
        mock_store.delete_statefulsets,
        mock_store.delete_configmaps,
        mock_store.delete_secrets,
        mock_store.delete_services,
        mock_store.delete_pvcs,
    ):
        namespace, labels, _ = delete.await_args.args
        assert namespace == NAMESPACE
        assert labels[LABEL_PARENT] == dc.metadata.name
    mock_cache.invalidate.assert_called_once_with(dc.key)
    deletion.connections.evict.assert_awaited_once_with(dc.key)
    # no session was ever established
    deletion.keyspaces.remove_datacenter.assert_not_awaited()


@pytest.mark.asyncio
async def test_keep_pvc_policy_keeps_volumes(deletion, mock_store, logger):
    await deletion.delete(make_datacenter(decommissionPolicy="KEEP_PVC"), logger)

    mock_store.delete_statefulsets.assert_awaited_once()
    mock_store.delete_pvcs.assert_not_awaited()


@pytest.mark.asyncio
async def test_failed_step_does_not_stop_the_others(deletion, mock_store, logger):
    mock_store.delete_statefulsets.side_effect = RuntimeError("api down")

    await deletion.delete(make_datacenter(), logger)

    mock_store.delete_services.assert_awaited_once()
    mock_store.delete_pvcs.assert_awaited_once()


@pytest.mark.asyncio
async def test_running_datacenter_is_removed_from_replication(deletion, logger):
    session = object()
    deletion.connections.get_or_create_session.return_value = session
    dc = make_datacenter(_established())

    await deletion.delete(dc, logger)

    deletion.keyspaces.remove_datacenter.assert_awaited_once_with(dc, dc.status, session, logger)


@pytest.mark.asyncio
async def test_unreachable_cluster_does_not_block_deletion(deletion, mock_store, logger):
    deletion.connections.get_or_create_session.side_effect = CqlConnectionError("no host")

    await deletion.delete(make_datacenter(_established()), logger)

    deletion.keyspaces.remove_datacenter.assert_not_awaited()
    mock_store.delete_statefulsets.assert_awaited_once()
