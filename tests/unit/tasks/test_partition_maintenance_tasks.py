from datetime import UTC, datetime

import pytest
from sqlalchemy.exc import OperationalError

from pulse.constants.system_constants import ErrorMessages
from pulse.errors import DatabaseError
from pulse.tasks import partition_maintenance_tasks
from pulse.types.partition import MaintenanceRunReport

STARTED_AT = datetime(2025, 3, 15, 2, 0, tzinfo=UTC)


class _StubRunner:
    def __init__(self, outcome) -> None:
        self.outcome = outcome
        self.calls = 0

    def run_scheduled(self):
        self.calls += 1
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


@pytest.mark.unit
def test_run_partition_maintenance_returns_report_payload() -> None:
    report = MaintenanceRunReport(
        dry_run=False,
        started_at=STARTED_AT,
        finished_at=datetime(2025, 3, 15, 2, 0, 1, 500000, tzinfo=UTC),
        results=[],
        health_before=[],
        health_after=[],
    )

    payload = partition_maintenance_tasks.run_partition_maintenance(_StubRunner(report))

    assert payload["success"] is True
    assert payload["data"]["duration_ms"] == 1500
    assert payload["data"]["dry_run"] is False


@pytest.mark.unit
def test_run_partition_maintenance_reports_skip_when_already_running() -> None:
    runner = _StubRunner(None)

    payload = partition_maintenance_tasks.run_partition_maintenance(runner)

    assert runner.calls == 1
    assert payload["success"] is True
    assert payload["data"] == {"skipped": True}
    assert payload["message"] == ErrorMessages.MAINTENANCE_ALREADY_RUNNING


@pytest.mark.unit
def test_run_partition_maintenance_wraps_store_errors() -> None:
    error = OperationalError("SELECT 1", {}, Exception("down"))

    payload = partition_maintenance_tasks.run_partition_maintenance(_StubRunner(error))

    assert payload["success"] is False
    assert payload["message_code"] == "DATABASE_QUERY_ERROR"


@pytest.mark.unit
def test_run_partition_maintenance_keeps_app_errors() -> None:
    payload = partition_maintenance_tasks.run_partition_maintenance(_StubRunner(DatabaseError("读取分区目录失败")))

    assert payload["success"] is False
    assert payload["message"] == "读取分区目录失败"

