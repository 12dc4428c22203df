import threading
import time

import pytest
from sqlalchemy.exc import OperationalError

from pulse.constants.partition_constants import MAINTENANCE_JOB_ID, HealthStatus, ManagedTable
from pulse.errors import MaintenanceAlreadyRunningError
from pulse.services.partition.partition_maintenance_runner import PartitionMaintenanceRunner
from pulse.types.partition import HealthSummary


def _summary(count: int) -> HealthSummary:
    return HealthSummary(
        table=ManagedTable.EVENTS,
        partition_count=count,
        total_rows=count * 10,
        total_size_mb=0.0,
        oldest_partition=None,
        newest_partition=None,
        retention_months=12,
        partitions_to_drop=0,
        status=HealthStatus.HEALTHY if count else HealthStatus.NO_PARTITIONS,
    )


class _StubHealth:
    def __init__(self) -> None:
        self.calls = 0

    def get_health_summary(self):
        self.calls += 1
        return [_summary(self.calls)]


class _StubService:
    def __init__(self, action=None) -> None:
        self.action = action
        self.dry_runs: list[bool] = []

    def run_full_maintenance(self, *, dry_run: bool):
        self.dry_runs.append(dry_run)
        if self.action is not None:
            self.action()
        return []


def _runner(service: _StubService, mock_time, health: _StubHealth | None = None) -> PartitionMaintenanceRunner:
    health = health or _StubHealth()
    return PartitionMaintenanceRunner(
        service_factory=lambda: service,
        health_factory=lambda: health,
        clock=mock_time.now,
    )


def _wait_until_idle(runner: PartitionMaintenanceRunner, timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while runner.is_running and time.monotonic() < deadline:
        time.sleep(0.01)


@pytest.mark.unit
def test_run_maintenance_returns_report_and_releases_state(mock_time) -> None:
    service = _StubService()
    health = _StubHealth()
    runner = _runner(service, mock_time, health)

    report = runner.run_maintenance(dry_run=True)

    assert service.dry_runs == [True]
    assert health.calls == 2
    assert report.health_before[0].partition_count == 1
    assert report.health_after[0].partition_count == 2
    assert report.duration_ms == 0
    assert runner.is_running is False


@pytest.mark.unit
def test_run_maintenance_rejects_concurrent_pass(mock_time) -> None:
    observed: list[bool] = []

    def _reenter() -> None:
        observed.append(runner.is_running)
        with pytest.raises(MaintenanceAlreadyRunningError) as exc_info:
            runner.run_maintenance(dry_run=True)
        assert exc_info.value.status_code == 409

    service = _StubService(_reenter)
    runner = _runner(service, mock_time)

    runner.run_maintenance(dry_run=False)

    assert observed == [True]
    assert service.dry_runs == [False]
    assert runner.is_running is False


@pytest.mark.unit
def test_run_maintenance_releases_state_after_failure(mock_time) -> None:
    failures = [OperationalError("SELECT 1", {}, Exception("down"))]

    def _fail_once() -> None:
        if failures:
            raise failures.pop()

    service = _StubService(_fail_once)
    runner = _runner(service, mock_time)

    with pytest.raises(OperationalError):
        runner.run_maintenance(dry_run=False)

    assert runner.is_running is False
    report = runner.run_maintenance(dry_run=True)
    assert report.dry_run is True
    assert service.dry_runs == [False, True]
    assert runner.is_running is False


@pytest.mark.unit
def test_run_scheduled_skips_when_already_running(mock_time) -> None:
    skipped: list[object] = []
    service = _StubService(lambda: skipped.append(runner.run_scheduled()))
    runner = _runner(service, mock_time)

    runner.run_maintenance(dry_run=True)

    assert skipped == [None]
    assert service.dry_runs == [True]


@pytest.mark.unit
def test_launch_background_conflicts_until_pass_finishes(mock_time) -> None:
    started = threading.Event()
    proceed = threading.Event()

    def _block() -> None:
        started.set()
        proceed.wait(timeout=5)

    runner = _runner(_StubService(_block), mock_time)

    launch = runner.launch_background(dry_run=True)
    assert launch.dry_run is True
    assert launch.started_at == mock_time.now()
    assert started.wait(timeout=5)

    with pytest.raises(MaintenanceAlreadyRunningError):
        runner.launch_background(dry_run=False)
    assert runner.get_status().is_running is True

    proceed.set()
    _wait_until_idle(runner)
    assert runner.is_running is False


@pytest.mark.unit
def test_background_failure_is_logged_and_released(mock_time) -> None:
    def _boom() -> None:
        raise OperationalError("SELECT 1", {}, Exception("down"))

    runner = _runner(_StubService(_boom), mock_time)

    runner.launch_background(dry_run=False)
    _wait_until_idle(runner)

    assert runner.is_running is False


@pytest.mark.unit
def test_get_status_reports_scheduled_job(mock_time) -> None:
    class _Scheduler:
        def __init__(self, jobs):
            self.jobs = jobs

        def get_job(self, job_id):
            return self.jobs.get(job_id)

    runner = _runner(_StubService(), mock_time)
    assert runner.get_status().to_dict() == {"is_running": False, "job_scheduled": False}

    runner.attach_scheduler(_Scheduler({MAINTENANCE_JOB_ID: object()}))
    assert runner.get_status().job_scheduled is True
