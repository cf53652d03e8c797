import pytest

from cassandra_operator.crds.datacenter import (
    DataCenterPhase,
    DataCenterStatus,
    ManagedKeyspace,
    RackStatus,
)
from cassandra_operator.crds.errors import (
    CqlConnectionError,
    NodeControlError,
    SchemaAgreementError,
)
from cassandra_operator.operator.cql.keyspaces import (
    CqlKeyspace,
    KeyspaceManager,
    alter_keyspace_cql,
    effective_rf,
)
from cassandra_operator.operator.plugins import default_registry
from cassandra_operator.utils.retry import RetryPolicy
from tests.helpers import FakeSession, make_datacenter

SYSTEM = {
    "system_auth": {"dc1": 3},
    "system_distributed": {"dc1": 3},
    "system_traces": {"dc1": 3},
}


def _status(*desired: int) -> DataCenterStatus:
    desired = desired or (3,)
    zones = [chr(ord("a") + i) for i in range(len(desired))]
    return DataCenterStatus(
        phase=DataCenterPhase.RUNNING,
        zones=zones,
        rack_statuses={
            i: RackStatus(index=i, name=zone, desired_replicas=n, ready_replicas=n)
            for i, (zone, n) in enumerate(zip(zones, desired))
        },
        ready_replicas=sum(desired),
        bootstrapped=True,
    )


@pytest.fixture
def manager(mock_proxy) -> KeyspaceManager:
    return KeyspaceManager(mock_proxy, default_registry(), schema_policy=RetryPolicy(3, 0))


@pytest.mark.parametrize(
    "target, ready, desired, expected",
    [
        (0, 0, 0, 1),
        (0, 3, 3, 1),
        (3, 0, 3, 1),
        (3, 2, 3, 2),
        (3, 5, 4, 3),
        (3, 5, 2, 2),
        (1, 3, 3, 1),
        (5, 5, 5, 5),
    ],
)
def test_effective_rf(target, ready, desired, expected):
    assert effective_rf(target, ready, desired) == expected


def test_needs_reconcile():
    keyspace = CqlKeyspace("ks", rf=3)
    assert keyspace.needs_reconcile(3)

    keyspace.mark_reconciled(3)
    assert not keyspace.needs_reconcile(3)
    # beyond the rf the DC size does not matter
    assert not keyspace.needs_reconcile(5)
    assert keyspace.needs_reconcile(2)


def test_alter_statement_drops_zero_entries_and_quotes_name():
    assert alter_keyspace_cql('my"ks', {"dc2": 2, "dc1": 0}) == (
        'ALTER KEYSPACE "my""ks" WITH replication = '
        "{'class': 'NetworkTopologyStrategy', 'dc2': 2}"
    )


@pytest.mark.asyncio
async def test_converge_increases_one_step_at_a_time(manager, logger):
    dc = make_datacenter(replicas=3)
    session = FakeSession({"ks": {"dc1": 1, "dc2": 2}})

    outcome = await manager.converge_replication(
        dc, _status(), session, CqlKeyspace("ks", rf=3), 3, logger
    )

    assert session.rf_history("ks") == [1, 2, 3]
    assert session.rf_history("ks", dc="dc2") == [2, 2, 2]
    assert session.keyspaces["ks"] == {"dc1": 3, "dc2": 2}
    assert outcome.steps == [1, 2, 3]
    assert (outcome.previous_rf, outcome.rf) == (1, 3)


@pytest.mark.asyncio
async def test_converge_decreases_and_marks_cleanup(manager, logger):
    dc = make_datacenter(replicas=3)
    status = _status()
    session = FakeSession({"ks": {"dc1": 3}})

    outcome = await manager.converge_replication(
        dc, status, session, CqlKeyspace("ks", rf=3), 1, logger
    )

    assert session.rf_history("ks") == [3, 2, 1]
    assert outcome.cleanup is True
    assert status.need_cleanup is True
    assert status.need_cleanup_keyspaces == ["ks"]


@pytest.mark.asyncio
async def test_converge_noop_when_already_at_target(manager, logger):
    session = FakeSession({"ks": {"dc1": 2}})
    outcome = await manager.converge_replication(
        make_datacenter(), _status(), session, CqlKeyspace("ks", rf=2), 2, logger
    )
    assert session.alters == []
    assert not outcome.changed


@pytest.mark.asyncio
async def test_converge_rereads_replication_before_each_alter(manager, logger):
    class ConcurrentSession(FakeSession):
        async def execute(self, query, params=None):
            result = await super().execute(query, params)
            if query.startswith("ALTER") and len(self.alters) == 1:
                # another datacenter changes its own rf meanwhile
                self.keyspaces["ks"]["dc2"] = 5
            return result

    session = ConcurrentSession({"ks": {"dc1": 1, "dc2": 2}})
    await manager.converge_replication(
        make_datacenter(), _status(), session, CqlKeyspace("ks", rf=2), 2, logger
    )

    assert session.keyspaces["ks"] == {"dc1": 2, "dc2": 5}


@pytest.mark.asyncio
async def test_schema_agreement_is_retried(manager, logger):
    session = FakeSession({"ks": {"dc1": 1}})
    session.agreement = [False, False]

    await manager.converge_replication(
        make_datacenter(), _status(), session, CqlKeyspace("ks", rf=2), 2, logger
    )

    assert session.rf_history("ks") == [1, 1, 1, 2]
    assert session.keyspaces["ks"]["dc1"] == 2


@pytest.mark.asyncio
async def test_schema_agreement_gives_up_after_max_attempts(manager, logger):
    session = FakeSession({"ks": {"dc1": 1}})
    session.disagree_on = {"ks"}

    with pytest.raises(SchemaAgreementError):
        await manager.converge_replication(
            make_datacenter(), _status(), session, CqlKeyspace("ks", rf=3), 3, logger
        )
    assert len(session.rf_history("ks")) == 3


@pytest.mark.asyncio
async def test_repair_fans_out_to_every_pod_after_increase(manager, mock_proxy, logger):
    session = FakeSession({"ks": {"dc1": 1}})

    outcome = await manager.converge_replication(
        make_datacenter(replicas=3),
        _status(2, 1),
        session,
        CqlKeyspace("ks", rf=3, repair=True),
        3,
        logger,
    )

    assert outcome.repaired is True
    repaired_pods = sorted(call.args[0].name for call in mock_proxy.repair.await_args_list)
    assert repaired_pods == [
        "elassandra-cl1-dc1-0-0",
        "elassandra-cl1-dc1-0-1",
        "elassandra-cl1-dc1-1-0",
    ]
    assert all(call.args[1] == "ks" for call in mock_proxy.repair.await_args_list)


@pytest.mark.asyncio
async def test_repair_failures_are_best_effort(manager, mock_proxy, logger):
    mock_proxy.repair.side_effect = NodeControlError("sidecar down")
    session = FakeSession({"ks": {"dc1": 1}})

    outcome = await manager.converge_replication(
        make_datacenter(), _status(), session, CqlKeyspace("ks", rf=2, repair=True), 2, logger
    )

    assert outcome.rf == 2
    assert mock_proxy.repair.await_count == 3


@pytest.mark.asyncio
async def test_no_repair_when_rf_stays_at_one(manager, mock_proxy, logger):
    session = FakeSession({"ks": {"dc2": 1}})
    await manager.converge_replication(
        make_datacenter(), _status(), session, CqlKeyspace("ks", rf=1, repair=True), 1, logger
    )
    mock_proxy.repair.assert_not_awaited()
    assert session.keyspaces["ks"] == {"dc1": 1, "dc2": 1}


@pytest.mark.asyncio
async def test_alter_skipped_when_every_dc_would_be_zero(manager, logger):
    session = FakeSession({"ks": {"dc1": 1}})
    await manager.converge_replication(
        make_datacenter(), _status(), session, CqlKeyspace("ks", rf=1), 0, logger
    )
    assert session.rf_history("ks") == [1]
    assert session.keyspaces["ks"] == {"dc1": 1}


@pytest.mark.asyncio
async def test_reconcile_keyspaces_isolates_failures(manager, logger):
    dc = make_datacenter(
        replicas=3,
        keyspaces=[{"name": "bad", "rf": 3}, {"name": "good", "rf": 3}],
    )
    status = _status()
    session = FakeSession({**SYSTEM, "bad": {"dc1": 1}, "good": {"dc1": 1}})
    session.disagree_on = {"bad"}

    await manager.reconcile_keyspaces(dc, status, session, logger)

    assert session.keyspaces["good"]["dc1"] == 3
    markers = status.keyspace_manager.keyspaces
    assert markers["good"].reconciled is True
    assert markers["good"].reconcile_with_dc_size == 3
    assert markers["bad"].reconciled is False
    assert markers["system_auth"].reconciled is True
    # retried on the next pass
    assert status.keyspace_manager.replicas == 0


@pytest.mark.asyncio
async def test_reconcile_keyspaces_converges_to_effective_rf(manager, logger):
    dc = make_datacenter(replicas=2, keyspaces=[{"name": "app", "rf": 3}])
    status = _status(2)
    session = FakeSession({**SYSTEM, "app": {"dc1": 1}})

    changed = await manager.reconcile_keyspaces(dc, status, session, logger)

    assert changed is True
    assert session.keyspaces["app"]["dc1"] == 2
    assert session.keyspaces["system_auth"]["dc1"] == 2
    assert status.keyspace_manager.replicas == 2

    session.statements.clear()
    assert await manager.reconcile_keyspaces(dc, status, session, logger) is False
    assert session.alters == []


@pytest.mark.asyncio
async def test_connectivity_loss_aborts_the_chain(manager, logger):
    dc = make_datacenter(replicas=3)
    session = FakeSession(dict(SYSTEM))
    session.lose_connection_on = "system_distributed"

    with pytest.raises(CqlConnectionError):
        await manager.reconcile_keyspaces(dc, _status(), session, logger)

    assert not any("system_traces" in (params or ()) for _, params in session.statements)


@pytest.mark.asyncio
async def test_create_if_not_exists(manager, logger):
    dc = make_datacenter(
        replicas=3, keyspaces=[{"name": "app", "rf": 3, "createIfNotExists": True}]
    )
    session = FakeSession(dict(SYSTEM))

    await manager.reconcile_keyspaces(dc, _status(), session, logger)

    assert any(q.startswith('CREATE KEYSPACE IF NOT EXISTS "app"') for q, _ in session.statements)
    assert session.keyspaces["app"] == {"dc1": 3}
    assert session.rf_history("app") == []


def test_managed_keyspaces_drops_undeclared_entries(manager):
    dc = make_datacenter(
        search={"enabled": True, "datacenterGroup": "g"},
        keyspaces=[{"name": "app", "rf": 2}],
    )
    status = _status()
    status.keyspace_manager.keyspaces = {
        "old": ManagedKeyspace(rf=1, reconciled=True),
        "app": ManagedKeyspace(rf=2, reconciled=True, reconcile_with_dc_size=3),
    }

    keyspaces = manager.managed_keyspaces(dc, status)

    assert set(keyspaces) == {
        "system_auth",
        "system_distributed",
        "system_traces",
        "elastic_admin_g",
        "app",
    }
    assert keyspaces["app"].reconciled is True
    assert keyspaces["app"].reconcile_with_dc_size == 3
    assert keyspaces["elastic_admin_g"].repair is True
    assert "old" not in status.keyspace_manager.keyspaces


@pytest.mark.asyncio
async def test_decrease_rf_before_scale_down_is_best_effort(manager, logger):
    dc = make_datacenter(
        replicas=2,
        keyspaces=[{"name": "ks", "rf": 3}, {"name": "small", "rf": 1}, {"name": "gone", "rf": 3}],
    )
    status = _status()
    session = FakeSession({**SYSTEM, "ks": {"dc1": 3}, "small": {"dc1": 1}})

    await manager.decrease_rf_before_scale_down(dc, status, session, 2, logger)

    assert session.keyspaces["ks"]["dc1"] == 2
    assert session.keyspaces["system_auth"]["dc1"] == 2
    assert session.rf_history("small") == []
    assert status.need_cleanup_keyspaces == []


@pytest.mark.asyncio
async def test_decrease_rf_before_scale_down_raises_on_connectivity_loss(manager, logger):
    dc = make_datacenter(replicas=2)
    session = FakeSession(dict(SYSTEM))
    session.lose_connection_on = "system_distributed"

    with pytest.raises(CqlConnectionError):
        await manager.decrease_rf_before_scale_down(dc, _status(), session, 2, logger)

    assert session.rf_history("system_traces") == []


@pytest.mark.asyncio
async def test_remove_datacenter(manager, logger):
    dc = make_datacenter(keyspaces=[{"name": "shared", "rf": 3}, {"name": "local", "rf": 3}])
    session = FakeSession({"shared": {"dc1": 3, "dc2": 3}, "local": {"dc1": 3}})

    await manager.remove_datacenter(dc, _status(), session, logger)

    assert session.keyspaces["shared"] == {"dc2": 3}
    assert session.keyspaces["local"] == {"dc1": 3}
