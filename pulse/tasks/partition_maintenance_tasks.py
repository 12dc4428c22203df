"""分区维护定时任务.

每日凌晨(UTC)执行一次完整维护: 创建未来分区、刷新统计、清理过期分区.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from pulse.constants.system_constants import ErrorMessages
from pulse.errors import AppError, DatabaseError
from pulse.utils.response_utils import unified_error_response, unified_success_response
from pulse.utils.structlog_config import log_error, log_info

if TYPE_CHECKING:
    from pulse.services.partition.partition_maintenance_runner import PartitionMaintenanceRunner

MODULE = "partition_tasks"
PARTITION_TASK_EXCEPTIONS: tuple[type[BaseException], ...] = (
    AppError,
    SQLAlchemyError,
    RuntimeError,
    LookupError,
    ValueError,
    ConnectionError,
    TimeoutError,
    OSError,
)


def _as_app_error(error: Exception) -> AppError:
    """确保返回 AppError 实例,便于统一错误上下文.

    Args:
        error: 捕获到的任意异常.

    Returns:
        AppError: 若已是 AppError 则原样返回,否则包装为 DatabaseError.

    """
    return error if isinstance(error, AppError) else DatabaseError(message=str(error))


def run_partition_maintenance(runner: PartitionMaintenanceRunner) -> dict[str, object]:
    """执行每日分区维护.

    已有维护流程在执行时本次触发被跳过,不排队、不重试.

    Returns:
        统一成功/失败响应载荷字典.

    """
    try:
        log_info("开始执行每日分区维护任务", module=MODULE)
        report = runner.run_scheduled()
        if report is None:
            payload, _ = unified_success_response(
                data={"skipped": True},
                message=ErrorMessages.MAINTENANCE_ALREADY_RUNNING,
            )
            return payload
        log_info(
            "每日分区维护任务完成",
            module=MODULE,
            duration_ms=report.duration_ms,
            error_count=report.error_count,
        )
        payload, _ = unified_success_response(data=report.to_dict(), message="分区维护任务已完成")
    except PARTITION_TASK_EXCEPTIONS as exc:
        app_error = _as_app_error(exc)
        log_error("每日分区维护任务失败", module=MODULE, exception=exc)
        payload, _ = unified_error_response(app_error)
        return payload
    else:
        return payload
