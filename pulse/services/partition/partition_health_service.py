"""分区健康摘要服务.

每次调用都基于分区目录实时计算,不做缓存.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from pulse.constants.partition_constants import HealthStatus, ManagedTable
from pulse.errors import DatabaseError
from pulse.repositories.partition_catalog_repository import PartitionCatalogRepository
from pulse.services.partition.partition_maintenance_service import (
    BYTES_IN_MIB,
    PartitionMaintenanceService,
    require_managed_table,
)
from pulse.services.partition.partition_naming import subtract_months
from pulse.types.partition import HealthSummary, PartitionEntry
from pulse.utils.structlog_config import log_error, log_info
from pulse.utils.time_utils import time_utils

if TYPE_CHECKING:
    from pulse.models.partition_metadata import PartitionMetadata
    from pulse.services.partition.partition_maintenance_service import Clock

MODULE = "partition_health"


def classify_health(partition_count: int, partitions_to_drop: int) -> HealthStatus:
    """按优先级 NO_PARTITIONS > CLEANUP_NEEDED > HEALTHY 判定健康状态."""
    if partition_count == 0:
        return HealthStatus.NO_PARTITIONS
    if partitions_to_drop > 0:
        return HealthStatus.CLEANUP_NEEDED
    return HealthStatus.HEALTHY


class PartitionHealthService:
    """分区目录健康摘要与分区列表查询."""

    def __init__(
        self,
        repository: PartitionCatalogRepository | None = None,
        *,
        clock: Clock | None = None,
        maintenance_service: PartitionMaintenanceService | None = None,
    ) -> None:
        self._repository = repository or PartitionCatalogRepository()
        self._clock = clock or time_utils.now
        self._maintenance_service = maintenance_service or PartitionMaintenanceService(
            self._repository,
            clock=self._clock,
        )

    def get_health_summary(self) -> list[HealthSummary]:
        """按受管表枚举顺序返回每张表的健康摘要.

        Returns:
            list[HealthSummary]: 每张受管表一条,空表的最早/最新分区为 None.

        Raises:
            DatabaseError: 读取分区目录或维护配置失败.

        """
        now = self._clock()
        summaries: list[HealthSummary] = []
        for config in self._maintenance_service.load_table_configs():
            entries = self._read_catalog(config.table.value)
            horizon = subtract_months(now, config.retention_months)
            starts = [time_utils.to_utc(entry.range_start) for entry in entries]
            partitions_to_drop = sum(1 for entry in entries if time_utils.to_utc(entry.range_end) <= horizon)

            summaries.append(
                HealthSummary(
                    table=config.table,
                    partition_count=len(entries),
                    total_rows=sum(int(entry.row_count or 0) for entry in entries),
                    total_size_mb=round(sum(int(entry.size_bytes or 0) for entry in entries) / BYTES_IN_MIB, 2),
                    oldest_partition=min(starts) if starts else None,
                    newest_partition=max(starts) if starts else None,
                    retention_months=config.retention_months,
                    partitions_to_drop=partitions_to_drop,
                    status=classify_health(len(entries), partitions_to_drop),
                    last_maintenance_at=time_utils.to_utc(config.last_maintenance_at),
                ),
            )

        log_info(
            "分区健康摘要已生成",
            module=MODULE,
            summaries=[
                {
                    "table": summary.table.value,
                    "partition_count": summary.partition_count,
                    "partitions_to_drop": summary.partitions_to_drop,
                    "status": summary.status.value,
                }
                for summary in summaries
            ],
        )
        return summaries

    def list_partitions(self, table: ManagedTable | str | None = None) -> list[PartitionEntry]:
        """列出目录中的分区,按父表、起点倒序排列.

        Args:
            table: 可选,仅返回该受管表的分区.

        Raises:
            ValidationError: 过滤表不受管理.
            DatabaseError: 读取分区目录失败.

        """
        parent_table = require_managed_table(table).value if table is not None else None
        return [self._to_entry(entry) for entry in self._read_catalog(parent_table)]

    def _read_catalog(self, parent_table: str | None) -> list[PartitionMetadata]:
        try:
            return self._repository.list_metadata(parent_table=parent_table)
        except SQLAlchemyError as exc:
            log_error("读取分区目录失败", module=MODULE, table=parent_table, exception=exc)
            raise DatabaseError(message="读取分区目录失败", extra={"table": parent_table}) from exc

    @staticmethod
    def _to_entry(entry: PartitionMetadata) -> PartitionEntry:
        return PartitionEntry(
            parent_table=entry.parent_table,
            partition_name=entry.partition_name,
            range_start=time_utils.to_utc(entry.range_start),
            range_end=time_utils.to_utc(entry.range_end),
            row_count=int(entry.row_count or 0),
            size_mb=round(int(entry.size_bytes or 0) / BYTES_IN_MIB, 2),
            last_analyzed_at=time_utils.to_utc(entry.last_analyzed_at),
            last_vacuumed_at=time_utils.to_utc(entry.last_vacuumed_at),
        )
