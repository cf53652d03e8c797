import pytest

from cassandra_operator.crds.datacenter import DataCenterStatus, RoleManagerStatus
from cassandra_operator.crds.errors import CqlConnectionError, CqlQueryError
from cassandra_operator.operator.cql.roles import CqlRoleManager
from cassandra_operator.operator.datacenter.resources.secrets import KEY_ADMIN_PASSWORD
from tests.helpers import FakeSession, make_datacenter


class FailingSession(FakeSession):
    def __init__(self, error):
        super().__init__()
        self.error = error

    async def execute(self, query, params=None):
        raise self.error


@pytest.mark.asyncio
async def test_admin_role_created_once(mock_store, logger):
    mock_store.read_secret_data.return_value = {KEY_ADMIN_PASSWORD: "s3cret"}
    manager = CqlRoleManager(mock_store)
    session = FakeSession()
    status = DataCenterStatus()

    assert await manager.reconcile_roles(make_datacenter(), status, session, logger) is True
    assert await manager.reconcile_roles(make_datacenter(), status, session, logger) is False

    assert status.role_manager.roles == ["admin"]
    assert len(session.statements) == 1
    query, params = session.statements[0]
    assert query.startswith("CREATE ROLE IF NOT EXISTS admin")
    assert params == ("s3cret",)


@pytest.mark.asyncio
async def test_no_roles_without_authentication(mock_store, logger):
    session = FakeSession()
    assert not await CqlRoleManager(mock_store).reconcile_roles(
        make_datacenter(authentication="NONE"), DataCenterStatus(), session, logger
    )
    assert session.statements == []


@pytest.mark.asyncio
async def test_missing_secret_skips_role_creation(mock_store, logger):
    session = FakeSession()
    assert not await CqlRoleManager(mock_store).reconcile_roles(
        make_datacenter(), DataCenterStatus(), session, logger
    )
    assert session.statements == []


@pytest.mark.asyncio
async def test_rejected_statement_is_logged(mock_store, logger):
    mock_store.read_secret_data.return_value = {KEY_ADMIN_PASSWORD: "s3cret"}
    status = DataCenterStatus(role_manager=RoleManagerStatus())

    changed = await CqlRoleManager(mock_store).reconcile_roles(
        make_datacenter(), status, FailingSession(CqlQueryError("unauthorized")), logger
    )

    assert changed is False
    assert status.role_manager.roles == []


@pytest.mark.asyncio
async def test_connectivity_loss_is_raised(mock_store, logger):
    mock_store.read_secret_data.return_value = {KEY_ADMIN_PASSWORD: "s3cret"}

    with pytest.raises(CqlConnectionError):
        await CqlRoleManager(mock_store).reconcile_roles(
            make_datacenter(), DataCenterStatus(), FailingSession(CqlConnectionError("gone")), logger
        )
