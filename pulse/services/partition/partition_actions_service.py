"""分区操作入口服务.

路由与任务共用的命令面: 负责解析、校验外部输入后调用维护/健康服务与执行器.
演练开关在此层为必填关键字参数,避免调用方误用默认值执行真实删除.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pulse.constants.partition_constants import (
    DEFAULT_MONTHS_AHEAD,
    DEFAULT_RETENTION_MONTHS,
    MONTHS_AHEAD_MAX,
    MONTHS_AHEAD_MIN,
    RETENTION_MONTHS_MAX,
    RETENTION_MONTHS_MIN,
)
from pulse.errors import ValidationError
from pulse.services.partition.partition_health_service import PartitionHealthService
from pulse.services.partition.partition_maintenance_service import (
    PartitionMaintenanceService,
    require_int_in_range,
    require_managed_table,
)

if TYPE_CHECKING:
    from pulse.services.partition.partition_maintenance_runner import PartitionMaintenanceRunner
    from pulse.types.partition import (
        HealthSummary,
        MaintenanceLaunch,
        MaintenanceResult,
        MaintenanceStatus,
        PartitionEntry,
    )


def require_bool(name: str, value: object) -> bool:
    """严格布尔校验,拒绝 "true"/1 之类的宽松输入."""
    if not isinstance(value, bool):
        raise ValidationError(f"{name} 必须为布尔值", extra={"field": name, "value": str(value)})
    return value


class PartitionActionsService:
    """分区操作编排服务."""

    def __init__(
        self,
        runner: PartitionMaintenanceRunner,
        *,
        maintenance_service: PartitionMaintenanceService | None = None,
        health_service: PartitionHealthService | None = None,
    ) -> None:
        self._runner = runner
        self._maintenance_service = maintenance_service or PartitionMaintenanceService()
        self._health_service = health_service or PartitionHealthService()

    def get_health_summary(self) -> list[HealthSummary]:
        """返回每张受管表的健康摘要."""
        return self._health_service.get_health_summary()

    def list_partitions(self, table: object | None = None) -> list[PartitionEntry]:
        """列出分区目录,可按受管表过滤."""
        if table is None or table == "":
            return self._health_service.list_partitions()
        return self._health_service.list_partitions(require_managed_table(table))

    def get_status(self) -> MaintenanceStatus:
        """返回维护运行状态."""
        return self._runner.get_status()

    def create_future_partitions(
        self,
        table: object,
        months_ahead: object = DEFAULT_MONTHS_AHEAD,
    ) -> MaintenanceResult:
        """创建未来分区."""
        managed = require_managed_table(table)
        months = require_int_in_range("months_ahead", months_ahead, MONTHS_AHEAD_MIN, MONTHS_AHEAD_MAX)
        return self._maintenance_service.create_future_partitions(managed, months)

    def analyze_partitions(self, table: object) -> MaintenanceResult:
        """刷新分区统计信息."""
        return self._maintenance_service.analyze_partitions(require_managed_table(table))

    def vacuum_partitions(self, table: object, full: object = False) -> MaintenanceResult:
        """回收分区空间."""
        managed = require_managed_table(table)
        return self._maintenance_service.vacuum_partitions(managed, full=require_bool("full", full))

    def drop_old_partitions(
        self,
        table: object,
        retention_months: object = DEFAULT_RETENTION_MONTHS,
        *,
        dry_run: object,
    ) -> MaintenanceResult:
        """清理过期分区,dry_run 必须显式给出."""
        managed = require_managed_table(table)
        retention = require_int_in_range(
            "retention_months",
            retention_months,
            RETENTION_MONTHS_MIN,
            RETENTION_MONTHS_MAX,
        )
        return self._maintenance_service.drop_old_partitions(
            managed,
            retention,
            dry_run=require_bool("dry_run", dry_run),
        )

    def run_maintenance(self, *, dry_run: object) -> MaintenanceLaunch:
        """后台启动完整维护流程,已在运行时立即抛出冲突."""
        return self._runner.launch_background(dry_run=require_bool("dry_run", dry_run))
