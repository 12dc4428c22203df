from datetime import UTC, datetime

import pytest
from sqlalchemy.exc import OperationalError

from pulse.constants.partition_constants import (
    HealthStatus,
    MaintenanceOperation,
    ManagedTable,
    PartitionStatus,
)
from pulse.constants.system_constants import SuccessMessages
from pulse.errors import DatabaseError
from pulse.services.partition.partition_actions_service import PartitionActionsService
from pulse.services.partition.partition_health_service import PartitionHealthService
from pulse.services.partition.partition_maintenance_service import PartitionMaintenanceService
from pulse.types.partition import (
    HealthSummary,
    MaintenanceLaunch,
    MaintenanceResult,
    PartitionEntry,
    PartitionOutcome,
)

NOW = datetime(2025, 3, 15, 12, 0, tzinfo=UTC)


def _result(operation: MaintenanceOperation, status: PartitionStatus, **params) -> MaintenanceResult:
    result = MaintenanceResult(operation=operation, table=ManagedTable.EVENTS, **params)
    result.add(PartitionOutcome("events_2024_01", status, "ok", row_count=3))
    return result


@pytest.mark.unit
def test_partitions_health_contract(client, monkeypatch) -> None:
    def _dummy_summary(self):
        del self
        return [
            HealthSummary(
                table=ManagedTable.EVENTS,
                partition_count=2,
                total_rows=10,
                total_size_mb=1.5,
                oldest_partition=datetime(2024, 1, 1, tzinfo=UTC),
                newest_partition=datetime(2025, 3, 1, tzinfo=UTC),
                retention_months=12,
                partitions_to_drop=1,
                status=HealthStatus.CLEANUP_NEEDED,
            ),
        ]

    monkeypatch.setattr(PartitionHealthService, "get_health_summary", _dummy_summary)

    response = client.get("/api/v1/partitions/health")

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["success"] is True
    summary = payload["data"][0]
    assert summary["status"] == "CLEANUP_NEEDED"
    assert summary["oldest_partition"] == "2024-01-01T00:00:00+00:00"
    assert {"table", "partition_count", "total_rows", "total_size_mb", "partitions_to_drop"}.issubset(summary)


@pytest.mark.unit
def test_partitions_health_maps_store_failure_to_500(client, monkeypatch) -> None:
    def _fail(self):
        del self
        raise DatabaseError(message="读取分区目录失败")

    monkeypatch.setattr(PartitionHealthService, "get_health_summary", _fail)

    response = client.get("/api/v1/partitions/health")

    assert response.status_code == 500
    payload = response.get_json()
    assert payload["success"] is False
    assert payload["message_code"] == "DATABASE_QUERY_ERROR"


@pytest.mark.unit
def test_partitions_list_passes_table_filter(client, monkeypatch) -> None:
    received: list[object] = []

    def _dummy_list(self, table=None):
        del self
        received.append(table)
        return [
            PartitionEntry(
                parent_table="events",
                partition_name="events_2025_03",
                range_start=datetime(2025, 3, 1, tzinfo=UTC),
                range_end=datetime(2025, 4, 1, tzinfo=UTC),
                row_count=5,
                size_mb=0.0,
            ),
        ]

    monkeypatch.setattr(PartitionActionsService, "list_partitions", _dummy_list)

    response = client.get("/api/v1/partitions/list?table=events")

    assert response.status_code == 200
    assert response.get_json()["data"][0]["partition_name"] == "events_2025_03"
    assert received == ["events"]


@pytest.mark.unit
def test_partitions_list_rejects_unmanaged_table(client) -> None:
    response = client.get("/api/v1/partitions/list?table=users")

    assert response.status_code == 400
    assert response.get_json()["message_code"] == "VALIDATION_ERROR"


@pytest.mark.unit
def test_partitions_status_contract(client) -> None:
    response = client.get("/api/v1/partitions/status")

    assert response.status_code == 200
    assert response.get_json()["data"] == {"is_running": False, "job_scheduled": False}


@pytest.mark.unit
def test_partitions_maintenance_requires_dry_run(client) -> None:
    response = client.post("/api/v1/partitions/maintenance", json={})

    assert response.status_code == 400
    payload = response.get_json()
    assert payload["message_code"] == "VALIDATION_ERROR"
    assert payload["extra"]["missing"] == ["dry_run"]


@pytest.mark.unit
def test_partitions_maintenance_rejects_non_boolean_dry_run(client) -> None:
    response = client.post("/api/v1/partitions/maintenance", json={"dry_run": "false"})
    assert response.status_code == 400


@pytest.mark.unit
def test_partitions_maintenance_accepted(client, runner, monkeypatch) -> None:
    launched: list[bool] = []

    def _launch(*, dry_run: bool) -> MaintenanceLaunch:
        launched.append(dry_run)
        return MaintenanceLaunch(dry_run=dry_run, started_at=NOW)

    monkeypatch.setattr(runner, "launch_background", _launch)

    response = client.post("/api/v1/partitions/maintenance", json={"dry_run": True})

    assert response.status_code == 202
    payload = response.get_json()
    assert payload["message"] == SuccessMessages.MAINTENANCE_STARTED
    assert payload["data"] == {"dry_run": True, "started_at": "2025-03-15T12:00:00+00:00"}
    assert launched == [True]


@pytest.mark.unit
def test_partitions_maintenance_conflict_when_already_running(client, runner) -> None:
    assert runner._try_acquire()
    try:
        response = client.post("/api/v1/partitions/maintenance", json={"dry_run": False})
    finally:
        runner._release()

    assert response.status_code == 409
    payload = response.get_json()
    assert payload["message_code"] == "MAINTENANCE_ALREADY_RUNNING"
    assert payload["extra"] == {"dry_run": False}


@pytest.mark.unit
def test_partitions_create_contract(client, monkeypatch) -> None:
    received: list[tuple[object, object]] = []

    def _dummy_create(self, table, months_ahead=6):
        del self
        received.append((table, months_ahead))
        return _result(MaintenanceOperation.CREATE_FUTURE_PARTITIONS, PartitionStatus.CREATED, months_ahead=3)

    monkeypatch.setattr(PartitionMaintenanceService, "create_future_partitions", _dummy_create)

    response = client.post("/api/v1/partitions/create", json={"table": "events", "months_ahead": 3})

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["message"] == SuccessMessages.PARTITIONS_CREATED
    assert payload["data"]["operation"] == "CREATE_FUTURE_PARTITIONS"
    assert payload["data"]["results"][0]["status"] == "CREATED"
    assert received == [(ManagedTable.EVENTS, 3)]


@pytest.mark.unit
@pytest.mark.parametrize(
    "body",
    [
        {},
        {"table": "sessions"},
        {"table": "events", "months_ahead": 0},
        {"table": "events", "months_ahead": 25},
        {"table": "events", "months_ahead": "6"},
    ],
)
def test_partitions_create_rejects_invalid_input(client, monkeypatch, body) -> None:
    monkeypatch.setattr(
        PartitionMaintenanceService,
        "create_future_partitions",
        lambda *_args, **_kwargs: pytest.fail("不应执行创建"),
    )

    response = client.post("/api/v1/partitions/create", json=body)

    assert response.status_code == 400


@pytest.mark.unit
def test_partitions_analyze_and_vacuum_contract(client, monkeypatch) -> None:
    vacuum_calls: list[bool] = []

    def _dummy_analyze(self, table):
        del self, table
        return _result(MaintenanceOperation.ANALYZE_PARTITIONS, PartitionStatus.ANALYZED)

    def _dummy_vacuum(self, table, *, full=False):
        del self, table
        vacuum_calls.append(full)
        return _result(MaintenanceOperation.VACUUM_PARTITIONS, PartitionStatus.VACUUMED, full=full)

    monkeypatch.setattr(PartitionMaintenanceService, "analyze_partitions", _dummy_analyze)
    monkeypatch.setattr(PartitionMaintenanceService, "vacuum_partitions", _dummy_vacuum)

    analyze = client.post("/api/v1/partitions/analyze", json={"table": "events"})
    vacuum = client.post("/api/v1/partitions/vacuum", json={"table": "events", "full": True})
    default_vacuum = client.post("/api/v1/partitions/vacuum", json={"table": "events"})

    assert analyze.status_code == 200
    assert analyze.get_json()["message"] == SuccessMessages.PARTITIONS_ANALYZED
    assert vacuum.status_code == 200
    assert vacuum.get_json()["data"]["full"] is True
    assert default_vacuum.status_code == 200
    assert vacuum_calls == [True, False]


@pytest.mark.unit
def test_partitions_cleanup_requires_dry_run(client) -> None:
    response = client.post("/api/v1/partitions/cleanup", json={"table": "events", "retention_months": 12})

    assert response.status_code == 400
    assert response.get_json()["extra"]["missing"] == ["dry_run"]


@pytest.mark.unit
@pytest.mark.parametrize(
    ("dry_run", "status", "message"),
    [
        (True, PartitionStatus.DRY_RUN, SuccessMessages.PARTITIONS_DRY_RUN),
        (False, PartitionStatus.DROPPED, SuccessMessages.PARTITIONS_DROPPED),
    ],
)
def test_partitions_cleanup_contract(client, monkeypatch, dry_run, status, message) -> None:
    def _dummy_drop(self, table, retention_months=12, *, dry_run=True):
        del self, table
        return _result(
            MaintenanceOperation.DROP_OLD_PARTITIONS,
            status,
            retention_months=retention_months,
            dry_run=dry_run,
        )

    monkeypatch.setattr(PartitionMaintenanceService, "drop_old_partitions", _dummy_drop)

    response = client.post(
        "/api/v1/partitions/cleanup",
        json={"table": "events", "retention_months": 13, "dry_run": dry_run},
    )

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["message"] == message
    assert payload["data"]["dry_run"] is dry_run
    assert payload["data"]["retention_months"] == 13
    assert payload["data"]["results"][0]["row_count"] == 3


@pytest.mark.unit
@pytest.mark.parametrize("retention_months", [0, 121])
def test_partitions_cleanup_rejects_out_of_range_retention(client, retention_months: int) -> None:
    response = client.post(
        "/api/v1/partitions/cleanup",
        json={"table": "events", "retention_months": retention_months, "dry_run": True},
    )
    assert response.status_code == 400


@pytest.mark.unit
def test_partitions_unexpected_store_error_is_wrapped(client, monkeypatch) -> None:
    def _fail(self, table):
        del self, table
        raise OperationalError("SELECT 1", {}, Exception("down"))

    monkeypatch.setattr(PartitionMaintenanceService, "analyze_partitions", _fail)

    response = client.post("/api/v1/partitions/analyze", json={"table": "events"})

    assert response.status_code == 500
    payload = response.get_json()
    assert payload["success"] is False
    assert payload["message"] == "刷新分区统计信息失败"
