"""分区每日维护流程执行器.

运行状态(空闲/运行中)是执行器实例上的显式字段,由锁保护的比较并设置操作维护;
同一时刻最多只有一次维护流程在执行,冲突的触发直接拒绝,不排队、不重试.
"""

from __future__ import annotations

import threading
from contextlib import AbstractContextManager, nullcontext
from typing import TYPE_CHECKING
from uuid import uuid4

from flask import has_app_context
from sqlalchemy.exc import SQLAlchemyError

from pulse.constants.partition_constants import MAINTENANCE_JOB_ID
from pulse.errors import AppError, MaintenanceAlreadyRunningError
from pulse.services.partition.partition_health_service import PartitionHealthService
from pulse.services.partition.partition_maintenance_service import PartitionMaintenanceService
from pulse.types.partition import MaintenanceLaunch, MaintenanceRunReport, MaintenanceStatus
from pulse.utils.logging.context_vars import maintenance_run_id_var
from pulse.utils.structlog_config import log_error, log_info, log_warning
from pulse.utils.time_utils import time_utils

if TYPE_CHECKING:
    from collections.abc import Callable

    from flask import Flask

    from pulse.scheduler import TaskScheduler
    from pulse.services.partition.partition_maintenance_service import Clock
    from pulse.types.partition import HealthSummary

MODULE = "partition_runner"
BACKGROUND_THREAD_NAME = "partition-maintenance"
MAINTENANCE_RUN_EXCEPTIONS: tuple[type[BaseException], ...] = (
    AppError,
    SQLAlchemyError,
    RuntimeError,
    LookupError,
    ValueError,
    TypeError,
    OSError,
)


class PartitionMaintenanceRunner:
    """每个进程唯一的分区维护执行器."""

    def __init__(
        self,
        app: Flask | None = None,
        *,
        service_factory: Callable[[], PartitionMaintenanceService] = PartitionMaintenanceService,
        health_factory: Callable[[], PartitionHealthService] = PartitionHealthService,
        clock: Clock | None = None,
    ) -> None:
        self.app = app
        self._service_factory = service_factory
        self._health_factory = health_factory
        self._clock = clock or time_utils.now
        self._state_lock = threading.Lock()
        self._is_running = False
        self._scheduler: TaskScheduler | None = None

    # ------------------------------------------------------------------------------
    # 运行状态
    # ------------------------------------------------------------------------------
    @property
    def is_running(self) -> bool:
        """当前是否有维护流程在执行."""
        with self._state_lock:
            return self._is_running

    def _try_acquire(self) -> bool:
        with self._state_lock:
            if self._is_running:
                return False
            self._is_running = True
            return True

    def _release(self) -> None:
        with self._state_lock:
            self._is_running = False

    def attach_scheduler(self, scheduler: TaskScheduler | None) -> None:
        """关联调度器,用于判断每日任务是否已注册."""
        self._scheduler = scheduler

    def get_status(self) -> MaintenanceStatus:
        """返回运行状态与每日任务注册情况."""
        job_scheduled = False
        if self._scheduler is not None:
            job_scheduled = self._scheduler.get_job(MAINTENANCE_JOB_ID) is not None
        return MaintenanceStatus(is_running=self.is_running, job_scheduled=job_scheduled)

    # ------------------------------------------------------------------------------
    # 触发入口
    # ------------------------------------------------------------------------------
    def run_maintenance(self, *, dry_run: bool) -> MaintenanceRunReport:
        """同步执行一次完整维护流程.

        Args:
            dry_run: 清理步骤是否仅演练.

        Returns:
            MaintenanceRunReport: 本次流程的执行报告.

        Raises:
            MaintenanceAlreadyRunningError: 已有流程在执行.
            DatabaseError: 读取维护配置或健康摘要失败.

        """
        if not self._try_acquire():
            raise MaintenanceAlreadyRunningError(extra={"dry_run": dry_run})
        try:
            return self._execute(dry_run=dry_run)
        finally:
            self._release()

    def launch_background(self, *, dry_run: bool) -> MaintenanceLaunch:
        """在后台线程执行维护流程,立即返回启动回执.

        互斥检查在调用线程同步完成,冲突会立刻抛出;后台线程结束时释放运行状态.

        Raises:
            MaintenanceAlreadyRunningError: 已有流程在执行.

        """
        if not self._try_acquire():
            raise MaintenanceAlreadyRunningError(extra={"dry_run": dry_run})

        launch = MaintenanceLaunch(dry_run=dry_run, started_at=self._clock())
        worker = threading.Thread(
            target=self._run_in_background,
            kwargs={"dry_run": dry_run},
            name=BACKGROUND_THREAD_NAME,
            daemon=True,
        )
        try:
            worker.start()
        except RuntimeError:
            self._release()
            raise
        log_info("分区维护已在后台启动", module=MODULE, dry_run=dry_run)
        return launch

    def run_scheduled(self) -> MaintenanceRunReport | None:
        """定时触发入口: 正式执行维护,遇到冲突仅记录日志."""
        try:
            return self.run_maintenance(dry_run=False)
        except MaintenanceAlreadyRunningError:
            log_warning("分区维护正在执行,跳过本次定时触发", module=MODULE)
            return None

    # ------------------------------------------------------------------------------
    # 执行流程
    # ------------------------------------------------------------------------------
    def _run_in_background(self, *, dry_run: bool) -> None:
        try:
            self._execute(dry_run=dry_run)
        except MAINTENANCE_RUN_EXCEPTIONS as exc:
            log_error("后台分区维护失败", module=MODULE, exception=exc, dry_run=dry_run)
        finally:
            self._release()

    def _app_context(self) -> AbstractContextManager[object]:
        if self.app is not None and not has_app_context():
            return self.app.app_context()
        return nullcontext()

    def _execute(self, *, dry_run: bool) -> MaintenanceRunReport:
        token = maintenance_run_id_var.set(uuid4().hex)
        try:
            with self._app_context():
                return self._run_pass(dry_run=dry_run)
        finally:
            maintenance_run_id_var.reset(token)

    def _run_pass(self, *, dry_run: bool) -> MaintenanceRunReport:
        started_at = self._clock()
        log_info("开始分区维护", module=MODULE, dry_run=dry_run)

        health_service = self._health_factory()
        health_before = health_service.get_health_summary()
        self._log_health("维护前分区健康摘要", health_before)

        results = self._service_factory().run_full_maintenance(dry_run=dry_run)

        health_after = health_service.get_health_summary()
        self._log_health("维护后分区健康摘要", health_after)
        self._log_comparison(health_before, health_after)

        report = MaintenanceRunReport(
            dry_run=dry_run,
            started_at=started_at,
            finished_at=self._clock(),
            results=results,
            health_before=health_before,
            health_after=health_after,
        )
        log_method = log_warning if report.error_count else log_info
        log_method(
            "分区维护完成",
            module=MODULE,
            dry_run=dry_run,
            duration_ms=report.duration_ms,
            operation_count=len(results),
            error_count=report.error_count,
        )
        return report

    @staticmethod
    def _log_health(message: str, summaries: list[HealthSummary]) -> None:
        for summary in summaries:
            log_info(
                message,
                module=MODULE,
                table=summary.table.value,
                partition_count=summary.partition_count,
                total_rows=summary.total_rows,
                total_size_mb=summary.total_size_mb,
                partitions_to_drop=summary.partitions_to_drop,
                status=summary.status.value,
            )

    @staticmethod
    def _log_comparison(before: list[HealthSummary], after: list[HealthSummary]) -> None:
        before_by_table = {summary.table: summary for summary in before}
        for summary in after:
            previous = before_by_table.get(summary.table)
            if previous is None:
                continue
            log_info(
                "分区维护前后对比",
                module=MODULE,
                table=summary.table.value,
                partitions_before=previous.partition_count,
                partitions_after=summary.partition_count,
                partition_delta=summary.partition_count - previous.partition_count,
                rows_delta=summary.total_rows - previous.total_rows,
                status_before=previous.status.value,
                status_after=summary.status.value,
            )
