"""分区维护服务.

负责受管父表(events、goal_completions)月度分区的创建、统计刷新、空间回收与过期清理.

约定:
- 单个分区的失败记录为 ``ERROR`` 结果,不中断同批次其他分区.
- 分区目录读取或事务提交失败视为存储不可用,以 ``DatabaseError`` 整体抛出.
- DDL 在逐分区 savepoint 内执行,失败只回滚当前分区.
"""

from __future__ import annotations

from collections.abc import Callable
from functools import partial
from typing import TYPE_CHECKING

from flask import current_app, has_app_context
from sqlalchemy.exc import SQLAlchemyError

from pulse import db
from pulse.constants.partition_constants import (
    DEFAULT_MONTHS_AHEAD,
    DEFAULT_RETENTION_MONTHS,
    MONTHS_AHEAD_MAX,
    MONTHS_AHEAD_MIN,
    RETENTION_MONTHS_MAX,
    RETENTION_MONTHS_MIN,
    MaintenanceOperation,
    ManagedTable,
    PartitionStatus,
)
from pulse.constants.system_constants import ErrorMessages
from pulse.errors import DatabaseError, ValidationError
from pulse.repositories.partition_catalog_repository import PartitionCatalogRepository
from pulse.services.partition.partition_naming import YearMonth, derive_bounds, parse_partition_name, subtract_months
from pulse.types.partition import MaintenanceResult, PartitionOutcome, TableMaintenanceConfig
from pulse.utils.structlog_config import log_error, log_info, log_warning
from pulse.utils.time_utils import time_utils

if TYPE_CHECKING:
    from datetime import datetime

    from pulse.models.partition_metadata import PartitionMetadata
    from pulse.types.partition import PartitionBounds

MODULE = "partition_service"
BYTES_IN_MIB = 1024 * 1024
PARTITION_STEP_EXCEPTIONS: tuple[type[BaseException], ...] = (SQLAlchemyError, ValueError)
SUB_OPERATION_EXCEPTIONS: tuple[type[BaseException], ...] = (DatabaseError, SQLAlchemyError)

Clock = Callable[[], "datetime"]


def require_managed_table(table: object) -> ManagedTable:
    """将输入解析为受管表,无法识别时抛出 ValidationError."""
    managed = ManagedTable.parse(table)
    if managed is None:
        raise ValidationError(
            ErrorMessages.UNMANAGED_TABLE.format(table=table),
            extra={"table": str(table), "allowed": [item.value for item in ManagedTable]},
        )
    return managed


def require_int_in_range(name: str, value: object, minimum: int, maximum: int) -> int:
    """校验整数参数落在闭区间 [minimum, maximum] 内(拒绝 bool)."""
    if isinstance(value, bool) or not isinstance(value, int) or not minimum <= value <= maximum:
        raise ValidationError(
            f"{name} 必须为 {minimum}-{maximum} 的整数",
            extra={"field": name, "value": str(value), "min": minimum, "max": maximum},
        )
    return value


def _config_default(key: str, fallback: int) -> int:
    if has_app_context():
        return int(current_app.config.get(key, fallback))
    return fallback


def log_maintenance_result(result: MaintenanceResult) -> None:
    """按统一结构输出单次维护操作的结果摘要.

    存在 ERROR 时摘要为 warning 级别,并逐条输出失败分区;清理操作逐条输出受影响分区.
    """
    summary: dict[str, object] = {
        "operation": result.operation.value,
        "table": result.table.value,
        "success_count": result.success_count,
        "error_count": result.error_count,
        "total": len(result.outcomes),
    }
    if result.months_ahead is not None:
        summary["months_ahead"] = result.months_ahead
    if result.operation is MaintenanceOperation.DROP_OLD_PARTITIONS:
        summary["retention_months"] = result.retention_months
        summary["dry_run"] = result.dry_run
        summary["would_drop_count"] = result.dry_run_count

    if result.has_errors:
        log_warning("分区维护操作完成(存在失败)", module=MODULE, **summary)
        for outcome in result.outcomes:
            if outcome.status is PartitionStatus.ERROR:
                log_error(
                    "分区操作失败",
                    module=MODULE,
                    operation=result.operation.value,
                    table=result.table.value,
                    partition_name=outcome.partition_name,
                    error=outcome.message,
                )
    else:
        log_info("分区维护操作完成", module=MODULE, **summary)

    if result.operation is MaintenanceOperation.DROP_OLD_PARTITIONS:
        for outcome in result.outcomes:
            log_info(
                "过期分区处理",
                module=MODULE,
                table=result.table.value,
                partition_name=outcome.partition_name,
                status=outcome.status.value,
                outcome_message=outcome.message,
                row_count=outcome.row_count,
            )


class PartitionMaintenanceService:
    """PostgreSQL 月度分区维护服务."""

    def __init__(
        self,
        repository: PartitionCatalogRepository | None = None,
        *,
        clock: Clock | None = None,
        default_months_ahead: int | None = None,
        default_retention_months: int | None = None,
    ) -> None:
        self._repository = repository or PartitionCatalogRepository()
        self._clock = clock or time_utils.now
        self._default_months_ahead = default_months_ahead or _config_default(
            "PARTITION_MONTHS_AHEAD",
            DEFAULT_MONTHS_AHEAD,
        )
        self._default_retention_months = default_retention_months or _config_default(
            "PARTITION_RETENTION_MONTHS",
            DEFAULT_RETENTION_MONTHS,
        )

    # ------------------------------------------------------------------------------
    # 创建未来分区
    # ------------------------------------------------------------------------------
    def create_future_partitions(
        self,
        table: ManagedTable | str,
        months_ahead: int = DEFAULT_MONTHS_AHEAD,
    ) -> MaintenanceResult:
        """创建当前月到当前月 + months_ahead(含)的月度分区.

        已存在的分区(物理表或目录任一存在)记为 ``ALREADY_EXISTS``,并补登缺失的目录条目;
        重复调用不会产生重复分区.

        Args:
            table: 受管父表.
            months_ahead: 提前创建的月数,1-24.

        Returns:
            MaintenanceResult: 每个月一条结果,共 months_ahead + 1 条.

        Raises:
            ValidationError: 表不受管理或 months_ahead 越界.
            DatabaseError: 目录读取或提交事务失败.

        """
        managed = require_managed_table(table)
        months_ahead = require_int_in_range("months_ahead", months_ahead, MONTHS_AHEAD_MIN, MONTHS_AHEAD_MAX)

        result = MaintenanceResult(
            operation=MaintenanceOperation.CREATE_FUTURE_PARTITIONS,
            table=managed,
            months_ahead=months_ahead,
        )
        current_month = YearMonth.from_datetime(self._clock())
        for offset in range(months_ahead + 1):
            bounds = derive_bounds(managed, current_month.shift(offset))
            result.add(self._create_partition(bounds))

        self._commit("提交分区创建事务失败", table=managed)
        log_maintenance_result(result)
        return result

    def _create_partition(self, bounds: PartitionBounds) -> PartitionOutcome:
        exists_physically, registered = self._read_existence(bounds)
        if exists_physically or registered:
            if not registered:
                try:
                    with db.session.begin_nested():
                        self._repository.register_metadata(bounds=bounds)
                except SQLAlchemyError as exc:
                    return PartitionOutcome(bounds.name, PartitionStatus.ERROR, str(exc))
            return PartitionOutcome(
                bounds.name,
                PartitionStatus.ALREADY_EXISTS,
                f"分区已存在: {bounds.start:%Y-%m}",
            )

        try:
            with db.session.begin_nested():
                self._repository.create_partition_table(bounds=bounds)
                self._repository.register_metadata(bounds=bounds)
        except SQLAlchemyError as exc:
            return PartitionOutcome(bounds.name, PartitionStatus.ERROR, str(exc))
        return PartitionOutcome(bounds.name, PartitionStatus.CREATED, f"已创建 {bounds.start:%Y-%m} 分区")

    def _read_existence(self, bounds: PartitionBounds) -> tuple[bool, bool]:
        try:
            exists_physically = self._repository.partition_table_exists(bounds=bounds)
            registered = self._repository.get_metadata(partition_name=bounds.name) is not None
        except SQLAlchemyError as exc:
            log_error("检查分区是否存在失败", module=MODULE, partition_name=bounds.name, exception=exc)
            raise DatabaseError(message="检查分区是否存在失败", extra={"partition_name": bounds.name}) from exc
        return exists_physically, registered

    # ------------------------------------------------------------------------------
    # 过期清理
    # ------------------------------------------------------------------------------
    def drop_old_partitions(
        self,
        table: ManagedTable | str,
        retention_months: int = DEFAULT_RETENTION_MONTHS,
        *,
        dry_run: bool = True,
    ) -> MaintenanceResult:
        """删除整体落在保留期之外的分区.

        仅 ``range_end <= now - retention_months`` 的分区会被选中;
        演练模式只读取行数并返回 ``DRY_RUN`` 结果,不做任何修改.

        Args:
            table: 受管父表.
            retention_months: 保留月数,1-120.
            dry_run: 是否仅演练,默认 True.

        Returns:
            MaintenanceResult: 每个候选分区一条结果(按分区起点升序).

        Raises:
            ValidationError: 表不受管理或 retention_months 越界.
            DatabaseError: 目录读取或提交事务失败.

        """
        managed = require_managed_table(table)
        retention_months = require_int_in_range(
            "retention_months",
            retention_months,
            RETENTION_MONTHS_MIN,
            RETENTION_MONTHS_MAX,
        )

        result = MaintenanceResult(
            operation=MaintenanceOperation.DROP_OLD_PARTITIONS,
            table=managed,
            retention_months=retention_months,
            dry_run=dry_run,
        )
        horizon = subtract_months(self._clock(), retention_months)
        candidates = [entry for entry in self._list_catalog(managed) if self._range_end(entry) <= horizon]
        candidates.sort(key=self._range_start)

        for entry in candidates:
            result.add(self._drop_partition(managed, entry, retention_months, dry_run=dry_run))

        if not dry_run:
            self._commit("提交过期分区清理事务失败", table=managed)
        log_maintenance_result(result)
        return result

    def _drop_partition(
        self,
        table: ManagedTable,
        entry: PartitionMetadata,
        retention_months: int,
        *,
        dry_run: bool,
    ) -> PartitionOutcome:
        row_count: int | None = None
        try:
            bounds = self._bounds_for(table, entry.partition_name)
            with db.session.begin_nested():
                row_count = self._repository.count_rows(bounds=bounds)
            if dry_run:
                return PartitionOutcome(
                    entry.partition_name,
                    PartitionStatus.DRY_RUN,
                    f"将删除 {bounds.start:%Y-%m} 分区(超过保留期 {retention_months} 个月)",
                    row_count=row_count,
                )
            with db.session.begin_nested():
                self._repository.detach_partition(bounds=bounds)
                self._repository.drop_partition_table(bounds=bounds)
                self._repository.delete_metadata(partition_name=entry.partition_name)
        except PARTITION_STEP_EXCEPTIONS as exc:
            return PartitionOutcome(entry.partition_name, PartitionStatus.ERROR, str(exc), row_count=row_count)
        return PartitionOutcome(
            entry.partition_name,
            PartitionStatus.DROPPED,
            f"已删除 {bounds.start:%Y-%m} 分区(超过保留期 {retention_months} 个月)",
            row_count=row_count,
        )

    # ------------------------------------------------------------------------------
    # 统计与空间回收
    # ------------------------------------------------------------------------------
    def analyze_partitions(self, table: ManagedTable | str) -> MaintenanceResult:
        """刷新受管表全部目录分区的统计信息(按起点倒序).

        Raises:
            ValidationError: 表不受管理.
            DatabaseError: 目录读取或提交事务失败.

        """
        managed = require_managed_table(table)
        result = MaintenanceResult(operation=MaintenanceOperation.ANALYZE_PARTITIONS, table=managed)

        for entry in self._list_catalog(managed):
            result.add(self._analyze_partition(managed, entry))

        self._commit("提交分区统计事务失败", table=managed)
        log_maintenance_result(result)
        return result

    def _analyze_partition(self, table: ManagedTable, entry: PartitionMetadata) -> PartitionOutcome:
        try:
            bounds = self._bounds_for(table, entry.partition_name)
            with db.session.begin_nested():
                row_count = self._repository.count_rows(bounds=bounds)
                size_bytes = self._repository.fetch_total_relation_size(bounds=bounds)
                self._repository.analyze_partition(bounds=bounds)
                self._repository.update_statistics(
                    partition_name=entry.partition_name,
                    row_count=row_count,
                    size_bytes=size_bytes,
                    analyzed_at=self._clock(),
                )
        except PARTITION_STEP_EXCEPTIONS as exc:
            return PartitionOutcome(entry.partition_name, PartitionStatus.ERROR, str(exc))
        return PartitionOutcome(
            entry.partition_name,
            PartitionStatus.ANALYZED,
            "统计信息已刷新",
            row_count=row_count,
            size_mb=round(size_bytes / BYTES_IN_MIB, 2),
        )

    def vacuum_partitions(self, table: ManagedTable | str, *, full: bool = False) -> MaintenanceResult:
        """对受管表全部目录分区执行 VACUUM(或 VACUUM FULL).

        Raises:
            ValidationError: 表不受管理.
            DatabaseError: 目录读取或提交事务失败.

        """
        managed = require_managed_table(table)
        result = MaintenanceResult(operation=MaintenanceOperation.VACUUM_PARTITIONS, table=managed, full=full)

        for entry in self._list_catalog(managed):
            result.add(self._vacuum_partition(managed, entry, full=full))

        self._commit("提交分区回收事务失败", table=managed)
        log_maintenance_result(result)
        return result

    def _vacuum_partition(self, table: ManagedTable, entry: PartitionMetadata, *, full: bool) -> PartitionOutcome:
        try:
            bounds = self._bounds_for(table, entry.partition_name)
            self._repository.vacuum_partition(bounds=bounds, full=full)
            with db.session.begin_nested():
                self._repository.mark_vacuumed(partition_name=entry.partition_name, vacuumed_at=self._clock())
        except PARTITION_STEP_EXCEPTIONS as exc:
            return PartitionOutcome(entry.partition_name, PartitionStatus.ERROR, str(exc))
        return PartitionOutcome(
            entry.partition_name,
            PartitionStatus.VACUUMED,
            "VACUUM FULL 完成" if full else "VACUUM 完成",
        )

    # ------------------------------------------------------------------------------
    # 每日完整维护
    # ------------------------------------------------------------------------------
    def load_table_configs(self) -> list[TableMaintenanceConfig]:
        """按受管表枚举顺序返回维护配置,缺少配置行时回退到默认值.

        Raises:
            DatabaseError: 读取 partition_config 失败.

        """
        try:
            rows = {row.table_name: row for row in self._repository.list_configs()}
        except SQLAlchemyError as exc:
            log_error("读取分区维护配置失败", module=MODULE, exception=exc)
            raise DatabaseError(message="读取分区维护配置失败") from exc

        configs: list[TableMaintenanceConfig] = []
        for managed in ManagedTable:
            row = rows.get(managed.value)
            if row is None:
                configs.append(
                    TableMaintenanceConfig(
                        table=managed,
                        months_ahead=self._default_months_ahead,
                        retention_months=self._default_retention_months,
                    ),
                )
                continue
            configs.append(
                TableMaintenanceConfig(
                    table=managed,
                    months_ahead=row.future_partitions,
                    retention_months=row.retention_months,
                    is_enabled=bool(row.is_enabled),
                    last_maintenance_at=row.last_maintenance_at,
                ),
            )
        return configs

    def run_full_maintenance(self, *, dry_run: bool = True) -> list[MaintenanceResult]:
        """对每张启用的受管表依次执行 创建 → 统计 → 清理.

        子操作相互隔离: 某一步抛出存储异常时记录一条表级 ERROR 结果,其余步骤与其余表照常执行.
        每日维护不执行 VACUUM.

        Args:
            dry_run: 清理步骤是否仅演练,默认 True.

        Returns:
            list[MaintenanceResult]: 每张表三条结果,顺序固定.

        Raises:
            DatabaseError: 读取维护配置失败.

        """
        results: list[MaintenanceResult] = []
        for config in self.load_table_configs():
            if not config.is_enabled:
                log_info("受管表已停用维护,跳过", module=MODULE, table=config.table.value)
                continue

            steps = (
                (
                    MaintenanceResult(
                        operation=MaintenanceOperation.CREATE_FUTURE_PARTITIONS,
                        table=config.table,
                        months_ahead=config.months_ahead,
                    ),
                    partial(self.create_future_partitions, config.table, config.months_ahead),
                ),
                (
                    MaintenanceResult(operation=MaintenanceOperation.ANALYZE_PARTITIONS, table=config.table),
                    partial(self.analyze_partitions, config.table),
                ),
                (
                    MaintenanceResult(
                        operation=MaintenanceOperation.DROP_OLD_PARTITIONS,
                        table=config.table,
                        retention_months=config.retention_months,
                        dry_run=dry_run,
                    ),
                    partial(self.drop_old_partitions, config.table, config.retention_months, dry_run=dry_run),
                ),
            )
            for placeholder, step in steps:
                results.append(self._run_isolated(placeholder, step))

            if not dry_run:
                self._stamp_last_maintenance(config.table)
        return results

    def _run_isolated(
        self,
        placeholder: MaintenanceResult,
        step: Callable[[], MaintenanceResult],
    ) -> MaintenanceResult:
        try:
            return step()
        except SUB_OPERATION_EXCEPTIONS as exc:
            db.session.rollback()
            message = exc.message if isinstance(exc, DatabaseError) else str(exc)
            placeholder.add(PartitionOutcome(placeholder.table.value, PartitionStatus.ERROR, message))
            log_maintenance_result(placeholder)
            return placeholder

    def _stamp_last_maintenance(self, table: ManagedTable) -> None:
        try:
            self._repository.touch_last_maintenance(table_name=table.value, maintained_at=self._clock())
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            log_warning("更新最近维护时间失败", module=MODULE, table=table.value, exception=exc)

    # ------------------------------------------------------------------------------
    # 内部辅助方法
    # ------------------------------------------------------------------------------
    def _list_catalog(self, table: ManagedTable) -> list[PartitionMetadata]:
        try:
            return self._repository.list_metadata(parent_table=table.value)
        except SQLAlchemyError as exc:
            log_error("读取分区目录失败", module=MODULE, table=table.value, exception=exc)
            raise DatabaseError(message="读取分区目录失败", extra={"table": table.value}) from exc

    @staticmethod
    def _bounds_for(table: ManagedTable, partition_name: str) -> PartitionBounds:
        year_month = parse_partition_name(table, partition_name)
        if year_month is None:
            msg = f"非法分区名称: {partition_name}"
            raise ValueError(msg)
        return derive_bounds(table, year_month)

    @staticmethod
    def _range_start(entry: PartitionMetadata) -> datetime:
        return time_utils.to_utc(entry.range_start)

    @staticmethod
    def _range_end(entry: PartitionMetadata) -> datetime:
        return time_utils.to_utc(entry.range_end)

    @staticmethod
    def _commit(message: str, *, table: ManagedTable) -> None:
        try:
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            log_error(message, module=MODULE, table=table.value, exception=exc)
            raise DatabaseError(message=message, extra={"table": table.value}) from exc
