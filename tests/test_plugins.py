from unittest.mock import AsyncMock

import pytest

from cassandra_operator.crds.datacenter import DataCenterStatus
from cassandra_operator.operator.cql.keyspaces import KeyspaceManager
from cassandra_operator.operator.plugins import (
    Plugin,
    PluginContext,
    PluginRegistry,
    SearchPlugin,
    default_registry,
)
from tests.helpers import NAMESPACE, make_datacenter


def _context(dc, store, logger) -> PluginContext:
    return PluginContext(dc=dc, status=DataCenterStatus(), session=object(), store=store, logger=logger)


def test_search_plugin_is_active_only_when_enabled():
    registry = default_registry()
    assert registry.active_plugins(make_datacenter()) == []
    assert [p.name for p in registry.active_plugins(make_datacenter(search={"enabled": True}))] == ["search"]


def test_search_admin_keyspace_name():
    assert SearchPlugin.admin_keyspace(make_datacenter(search={"enabled": True})) == "elastic_admin"
    dc = make_datacenter(search={"enabled": True, "datacenterGroup": "eu"})
    assert SearchPlugin.admin_keyspace(dc) == "elastic_admin_eu"


def test_user_keyspace_does_not_override_plugin_declaration(mock_proxy):
    dc = make_datacenter(search={"enabled": True}, keyspaces=[{"name": "elastic_admin", "rf": 1}])
    keyspaces = KeyspaceManager(mock_proxy, default_registry()).managed_keyspaces(dc, DataCenterStatus())
    assert keyspaces["elastic_admin"].rf == 3


@pytest.mark.asyncio
async def test_search_plugin_applies_its_service(mock_store, logger):
    mock_store.apply_service.return_value = True
    dc = make_datacenter(search={"enabled": True})

    assert await default_registry().reconcile_all(_context(dc, mock_store, logger)) is True

    namespace, service, _ = mock_store.apply_service.await_args.args
    assert namespace == NAMESPACE
    assert service["metadata"]["name"] == "elassandra-cl1-dc1-elasticsearch"


@pytest.mark.asyncio
async def test_failing_plugin_does_not_stop_the_others(mock_store, logger):
    class Broken(Plugin):
        name = "broken"

        def is_active(self, dc):
            return True

        async def reconcile(self, context):
            raise RuntimeError("boom")

    mock_store.apply_service.return_value = True
    registry = PluginRegistry([Broken(), SearchPlugin()])
    dc = make_datacenter(search={"enabled": True})

    assert await registry.reconcile_all(_context(dc, mock_store, logger)) is True
    mock_store.apply_service.assert_awaited_once()


@pytest.mark.asyncio
async def test_inactive_plugins_are_skipped(logger):
    store = AsyncMock()
    assert await default_registry().reconcile_all(_context(make_datacenter(), store, logger)) is False
    store.apply_service.assert_not_awaited()
