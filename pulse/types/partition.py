"""分区生命周期相关类型定义."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pulse.constants.partition_constants import (
    HealthStatus,
    MaintenanceOperation,
    ManagedTable,
    PartitionStatus,
)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True, slots=True)
class PartitionBounds:
    """单个月度分区的名称与半开区间 [start, end)."""

    parent_table: ManagedTable
    name: str
    start: datetime
    end: datetime


@dataclass(slots=True)
class TableMaintenanceConfig:
    """单张受管表的维护配置."""

    table: ManagedTable
    months_ahead: int
    retention_months: int
    is_enabled: bool = True
    last_maintenance_at: datetime | None = None


@dataclass(slots=True)
class PartitionOutcome:
    """单个分区在一次操作中的处理结果."""

    partition_name: str
    status: PartitionStatus
    message: str
    row_count: int | None = None
    size_mb: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """转换为可序列化字典."""
        payload: dict[str, Any] = {
            "partition_name": self.partition_name,
            "status": self.status.value,
            "message": self.message,
        }
        if self.row_count is not None:
            payload["row_count"] = self.row_count
        if self.size_mb is not None:
            payload["size_mb"] = self.size_mb
        return payload


@dataclass(slots=True)
class MaintenanceResult:
    """一次维护操作针对单张受管表的结果报告.

    结果只用于日志与接口返回,不做持久化.
    """

    operation: MaintenanceOperation
    table: ManagedTable
    outcomes: list[PartitionOutcome] = field(default_factory=list)
    months_ahead: int | None = None
    retention_months: int | None = None
    dry_run: bool | None = None
    full: bool | None = None

    def add(self, outcome: PartitionOutcome) -> PartitionOutcome:
        """追加单个分区结果并返回该结果."""
        self.outcomes.append(outcome)
        return outcome

    def count(self, status: PartitionStatus) -> int:
        """统计指定状态的分区数量."""
        return sum(1 for outcome in self.outcomes if outcome.status is status)

    @property
    def error_count(self) -> int:
        return self.count(PartitionStatus.ERROR)

    @property
    def dry_run_count(self) -> int:
        return self.count(PartitionStatus.DRY_RUN)

    @property
    def success_count(self) -> int:
        return len(self.outcomes) - self.error_count

    @property
    def has_errors(self) -> bool:
        return self.error_count > 0

    def to_dict(self) -> dict[str, Any]:
        """转换为可序列化字典,仅输出本次操作使用到的参数."""
        payload: dict[str, Any] = {
            "operation": self.operation.value,
            "table": self.table.value,
            "results": [outcome.to_dict() for outcome in self.outcomes],
            "success_count": self.success_count,
            "error_count": self.error_count,
        }
        for key in ("months_ahead", "retention_months", "dry_run", "full"):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        return payload


@dataclass(slots=True)
class PartitionEntry:
    """分区目录中的单个分区条目."""

    parent_table: str
    partition_name: str
    range_start: datetime
    range_end: datetime
    row_count: int
    size_mb: float
    last_analyzed_at: datetime | None = None
    last_vacuumed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """转换为可序列化字典."""
        return {
            "parent_table": self.parent_table,
            "partition_name": self.partition_name,
            "range_start": _iso(self.range_start),
            "range_end": _iso(self.range_end),
            "row_count": self.row_count,
            "size_mb": self.size_mb,
            "last_analyzed_at": _iso(self.last_analyzed_at),
            "last_vacuumed_at": _iso(self.last_vacuumed_at),
        }


@dataclass(slots=True)
class HealthSummary:
    """单张受管表的分区健康摘要."""

    table: ManagedTable
    partition_count: int
    total_rows: int
    total_size_mb: float
    oldest_partition: datetime | None
    newest_partition: datetime | None
    retention_months: int
    partitions_to_drop: int
    status: HealthStatus
    last_maintenance_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """转换为可序列化字典."""
        return {
            "table": self.table.value,
            "partition_count": self.partition_count,
            "total_rows": self.total_rows,
            "total_size_mb": self.total_size_mb,
            "oldest_partition": _iso(self.oldest_partition),
            "newest_partition": _iso(self.newest_partition),
            "retention_months": self.retention_months,
            "partitions_to_drop": self.partitions_to_drop,
            "status": self.status.value,
            "last_maintenance_at": _iso(self.last_maintenance_at),
        }


@dataclass(slots=True)
class MaintenanceStatus:
    """维护调度运行状态."""

    is_running: bool
    job_scheduled: bool

    def to_dict(self) -> dict[str, Any]:
        return {"is_running": self.is_running, "job_scheduled": self.job_scheduled}


@dataclass(slots=True)
class MaintenanceRunReport:
    """一次完整维护流程的执行报告."""

    dry_run: bool
    started_at: datetime
    finished_at: datetime
    results: list[MaintenanceResult]
    health_before: list[HealthSummary]
    health_after: list[HealthSummary]

    @property
    def duration_ms(self) -> int:
        return int((self.finished_at - self.started_at).total_seconds() * 1000)

    @property
    def error_count(self) -> int:
        return sum(result.error_count for result in self.results)

    def to_dict(self) -> dict[str, Any]:
        """转换为可序列化字典."""
        return {
            "dry_run": self.dry_run,
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
            "duration_ms": self.duration_ms,
            "error_count": self.error_count,
            "results": [result.to_dict() for result in self.results],
            "health_before": [summary.to_dict() for summary in self.health_before],
            "health_after": [summary.to_dict() for summary in self.health_after],
        }


@dataclass(slots=True)
class MaintenanceLaunch:
    """后台维护任务启动回执."""

    dry_run: bool
    started_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {"dry_run": self.dry_run, "started_at": _iso(self.started_at)}


__all__ = [
    "HealthSummary",
    "MaintenanceLaunch",
    "MaintenanceResult",
    "MaintenanceRunReport",
    "MaintenanceStatus",
    "PartitionBounds",
    "PartitionEntry",
    "PartitionOutcome",
    "TableMaintenanceConfig",
]
