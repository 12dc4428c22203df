"""Pulse 定时任务调度器.

使用 APScheduler 实现轻量级定时任务,并通过文件锁控制单实例运行.
"""

from __future__ import annotations

import atexit
import os
from collections.abc import Callable
from functools import partial
from importlib import import_module
from pathlib import Path
from typing import IO, TYPE_CHECKING, Any

import yaml
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, JobExecutionEvent
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from yaml import YAMLError

try:
    import fcntl  # type: ignore[attr-defined]
except ImportError:  # pragma: no cover - Windows 环境不会加载
    fcntl = None

from pulse.constants.partition_constants import MAINTENANCE_JOB_ID
from pulse.utils.structlog_config import get_system_logger

if TYPE_CHECKING:
    from apscheduler.job import Job
    from flask import Flask

    from pulse.services.partition.partition_maintenance_runner import PartitionMaintenanceRunner

logger = get_system_logger()

JobFunc = Callable[..., object]
TriggerArg = BaseTrigger | str
SCHEDULER_TIMEZONE = "UTC"


class _SchedulerLockState:
    """记录调度器文件锁的句柄与所属进程."""

    def __init__(self) -> None:
        self.handle: IO[str] | None = None
        self.pid: int | None = None


_LOCK_STATE = _SchedulerLockState()

LOCK_IO_EXCEPTIONS: tuple[type[BaseException], ...] = (OSError,)
SCHEDULER_INIT_EXCEPTIONS: tuple[type[BaseException], ...] = (
    OSError,
    RuntimeError,
    LookupError,
    ValueError,
)
DEFAULT_TASK_CREATION_EXCEPTIONS: tuple[type[BaseException], ...] = (
    ValueError,
    LookupError,
    RuntimeError,
    TypeError,
)
CONFIG_IO_EXCEPTIONS: tuple[type[BaseException], ...] = (OSError, YAMLError)
CRON_FIELDS = ("second", "minute", "hour", "day", "month", "day_of_week", "year")
TASK_CONFIG_PATH = Path(__file__).resolve().parent / "config" / "scheduler_tasks.yaml"
LOCK_FILE_PATH = Path("userdata") / "scheduler.lock"
TASK_FUNCTIONS: dict[str, JobFunc | str] = {
    "run_partition_maintenance": "pulse.tasks.partition_maintenance_tasks:run_partition_maintenance",
}


def _load_task_callable(function_name: str) -> JobFunc | None:
    """按需加载任务函数,避免在导入阶段触发循环依赖."""
    target = TASK_FUNCTIONS.get(function_name)
    if callable(target):
        return target
    if isinstance(target, str):
        module_path, attr_name = target.split(":", 1)
        module = import_module(module_path)
        func = getattr(module, attr_name)
        TASK_FUNCTIONS[function_name] = func
        return func
    return None


class TaskScheduler:
    """定时任务调度器."""

    def __init__(self, app: Flask | None = None) -> None:
        """初始化调度器包装类.

        Args:
            app: 可选的 Flask 应用实例,用于后续加载任务时获取上下文.

        """
        self.app = app
        self.scheduler: BackgroundScheduler = self._setup_scheduler()

    def _setup_scheduler(self) -> BackgroundScheduler:
        """配置 APScheduler 并注册事件监听.

        任务绑定的是进程内的执行器对象,无法序列化,因此使用内存 jobstore;
        默认任务在每次启动时从 YAML 配置重新注册.
        """
        jobstores = {"default": MemoryJobStore()}
        executors = {"default": ThreadPoolExecutor(max_workers=5)}
        job_defaults = {
            "coalesce": True,  # 合并相同任务
            "max_instances": 1,  # 最大实例数
            "misfire_grace_time": 300,  # 错过执行时间容忍度(秒)
        }

        scheduler = BackgroundScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone=SCHEDULER_TIMEZONE,
        )

        scheduler.add_listener(self._job_executed, EVENT_JOB_EXECUTED)
        scheduler.add_listener(self._job_error, EVENT_JOB_ERROR)
        return scheduler

    def _job_executed(self, event: JobExecutionEvent) -> None:
        """处理任务成功事件."""
        logger.info(
            "任务执行成功",
            module="scheduler",
            job_id=event.job_id,
            retval=str(event.retval),
        )

    def _job_error(self, event: JobExecutionEvent) -> None:
        """处理任务失败事件.

        Args:
            event: APScheduler 事件对象,包含异常信息.

        """
        exception_str = str(event.exception) if event.exception else "未知错误"
        logger.error(
            "任务执行失败",
            module="scheduler",
            job_id=event.job_id,
            error=exception_str,
        )

    def start(self) -> None:
        """启动调度器."""
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("定时任务调度器已启动", module="scheduler")
        else:
            logger.warning("定时任务调度器已经在运行,跳过启动", module="scheduler")

    def add_job(self, func: JobFunc, trigger: TriggerArg, **kwargs: object) -> Job:
        """向调度器注册任务.

        Args:
            func: 需要调度的可调用对象.
            trigger: APScheduler 触发器或触发器关键字参数.
            **kwargs: 传递给 `scheduler.add_job` 的其它参数,如 id/name.

        Returns:
            Job: APScheduler 新建任务对象.

        """
        return self.scheduler.add_job(func, trigger, **kwargs)

    def get_jobs(self) -> list[Job]:
        """列出所有任务."""
        return self.scheduler.get_jobs()

    def get_job(self, job_id: str) -> Job | None:
        """获取指定任务.

        Args:
            job_id: 任务 ID.

        Returns:
            Job | None: 匹配的 APScheduler 任务对象.

        """
        return self.scheduler.get_job(job_id)


# 全局调度器实例
scheduler = TaskScheduler()


def _acquire_scheduler_lock() -> bool:
    """尝试获取文件锁,确保单进程运行调度器.

    Returns:
        bool: 成功获取锁返回 True,否则返回 False.

    """
    if fcntl is None:
        logger.warning("当前平台不支持fcntl,无法加文件锁,可能存在多个调度器实例并发运行", module="scheduler")
        return True

    current_pid = os.getpid()

    if _LOCK_STATE.handle:
        if _LOCK_STATE.pid == current_pid:
            return True
        # 子进程继承了锁句柄,但并未真正持有锁,需要重新获取
        try:  # pragma: no cover
            _LOCK_STATE.handle.close()
        except LOCK_IO_EXCEPTIONS as close_error:
            logger.warning("继承的调度器锁句柄关闭失败", module="scheduler", error=str(close_error))
        _LOCK_STATE.handle = None
        _LOCK_STATE.pid = None

    LOCK_FILE_PATH.parent.mkdir(exist_ok=True)
    handle = LOCK_FILE_PATH.open("w+")
    try:
        fcntl.flock(handle, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError:
        handle.close()
        logger.info("检测到其他进程正在运行调度器,跳过当前进程的调度器初始化", module="scheduler")
        return False
    except LOCK_IO_EXCEPTIONS as lock_error:  # pragma: no cover - 极端情况
        handle.close()
        logger.exception("获取调度器锁失败", module="scheduler", error=str(lock_error))
        return False
    else:
        handle.write(str(current_pid))
        handle.flush()
        _LOCK_STATE.handle = handle
        _LOCK_STATE.pid = current_pid
        logger.info("调度器锁已获取,当前进程负责运行定时任务", module="scheduler", pid=current_pid)
        return True


def _release_scheduler_lock() -> None:
    """释放调度器文件锁并清理句柄."""
    if fcntl is None or not _LOCK_STATE.handle:
        return
    try:  # pragma: no cover
        fcntl.flock(_LOCK_STATE.handle, fcntl.LOCK_UN)
    except LOCK_IO_EXCEPTIONS as unlock_error:
        logger.warning("释放调度器文件锁失败", module="scheduler", error=str(unlock_error))
    try:  # pragma: no cover
        _LOCK_STATE.handle.close()
    except LOCK_IO_EXCEPTIONS as close_error:
        logger.warning("关闭调度器锁文件失败", module="scheduler", error=str(close_error))
    finally:
        _LOCK_STATE.handle = None
        _LOCK_STATE.pid = None


atexit.register(_release_scheduler_lock)


def _should_start_scheduler(app: Flask) -> bool:
    """根据配置及进程角色判断是否需启动调度器.

    Returns:
        bool: True 表示可以启动,False 表示跳过.

    """
    if not app.config.get("ENABLE_SCHEDULER", True):
        logger.info("检测到调度器禁用标记,跳过初始化", module="scheduler")
        return False

    server_software = str(app.config.get("SERVER_SOFTWARE") or "")
    if server_software.startswith("gunicorn"):
        logger.info(
            "检测到 gunicorn 环境,通过文件锁保持单实例",
            module="scheduler",
            parent_pid=os.getppid(),
        )

    # Flask reloader: 只有子进程 (WERKZEUG_RUN_MAIN=true) 才运行调度器
    if app.config.get("FLASK_RUN_FROM_CLI") and not app.config.get("WERKZEUG_RUN_MAIN"):
        logger.info("检测到 Flask reloader 父进程,跳过调度器初始化", module="scheduler")
        return False

    return True


def init_scheduler(app: Flask, runner: PartitionMaintenanceRunner) -> TaskScheduler | None:
    """初始化调度器(仅在允许的进程中启动).

    Args:
        app: Flask 应用实例,用于任务上下文.
        runner: 分区维护执行器,每日任务绑定到该实例.

    Returns:
        TaskScheduler | None: 初始化成功时返回 TaskScheduler,否则返回 None.

    """
    if not _should_start_scheduler(app):
        return None

    if not _acquire_scheduler_lock():
        return None

    if scheduler.app is not None:
        # 已启动的调度器改为绑定当前执行器,避免每日任务继续调用旧实例
        logger.info("调度器已经初始化过,重新注册默认任务", module="scheduler")
        try:
            scheduler.app = app
            _load_tasks_from_config(app, runner)
        except SCHEDULER_INIT_EXCEPTIONS as reload_error:
            logger.exception("重新注册默认任务失败", module="scheduler", error=str(reload_error))
            return None
        runner.attach_scheduler(scheduler)
        return scheduler

    try:
        scheduler.app = app
        scheduler.start()
        _load_tasks_from_config(app, runner)
    except SCHEDULER_INIT_EXCEPTIONS as init_error:
        logger.exception("调度器初始化失败", module="scheduler", error=str(init_error))
        return None
    else:
        runner.attach_scheduler(scheduler)
        logger.info("调度器初始化完成", module="scheduler", job_count=len(scheduler.get_jobs()))
        return scheduler


def _load_tasks_from_config(app: Flask, runner: PartitionMaintenanceRunner) -> None:
    """从配置文件加载默认任务并注册."""
    try:
        task_configs = _read_default_task_configs()
    except FileNotFoundError:
        logger.exception("配置文件不存在,无法加载默认任务", module="scheduler", config_file=str(TASK_CONFIG_PATH))
        return
    except CONFIG_IO_EXCEPTIONS as config_error:
        logger.exception(
            "读取配置文件失败",
            module="scheduler",
            config_file=str(TASK_CONFIG_PATH),
            error=str(config_error),
        )
        return

    for task_config in task_configs:
        _register_task_from_config(_apply_settings_overrides(app, task_config), runner)

    logger.info("默认定时任务已添加", module="scheduler")


def _read_default_task_configs() -> list[dict[str, Any]]:
    """读取调度任务配置."""
    with TASK_CONFIG_PATH.open(encoding="utf-8") as config_buffer:
        config = yaml.safe_load(config_buffer) or {}
    return config.get("default_tasks", [])


def _apply_settings_overrides(app: Flask, task_config: dict[str, Any]) -> dict[str, Any]:
    """用应用配置覆盖分区维护任务的执行时间与启用状态."""
    if task_config.get("id") != MAINTENANCE_JOB_ID:
        return task_config
    trigger_params = dict(task_config.get("trigger_params", {}))
    trigger_params["hour"] = app.config.get("PARTITION_MAINTENANCE_HOUR", trigger_params.get("hour", 2))
    trigger_params["minute"] = app.config.get("PARTITION_MAINTENANCE_MINUTE", trigger_params.get("minute", 0))
    enabled = bool(task_config.get("enabled", True)) and bool(app.config.get("PARTITION_MAINTENANCE_ENABLED", True))
    return {**task_config, "trigger_params": trigger_params, "enabled": enabled}


def _register_task_from_config(task_config: dict[str, Any], runner: PartitionMaintenanceRunner) -> None:
    """根据配置注册单个任务."""
    task_id = task_config["id"]
    task_name = task_config["name"]
    if not task_config.get("enabled", True):
        logger.info("定时任务已停用,跳过注册", module="scheduler", task_id=task_id)
        return

    function_name = task_config["function"]
    trigger_type = task_config["trigger_type"]
    trigger_params = task_config.get("trigger_params", {})

    func = _load_task_callable(function_name)
    if not func:
        logger.warning("未知的任务函数", module="scheduler", function_name=function_name)
        return

    try:
        _schedule_job(partial(func, runner), task_id, task_name, trigger_type, trigger_params)
        logger.info("添加调度任务", module="scheduler", task_name=task_name, task_id=task_id)
    except DEFAULT_TASK_CREATION_EXCEPTIONS as error:
        logger.exception(
            "创建调度任务失败",
            module="scheduler",
            task_name=task_name,
            task_id=task_id,
            error=str(error),
        )


def _schedule_job(
    func: JobFunc,
    task_id: str,
    task_name: str,
    trigger_type: str,
    trigger_params: dict[str, Any],
) -> None:
    """将任务注册到调度器(同 ID 任务覆盖)."""
    if trigger_type == "cron":
        trigger = _build_cron_trigger(trigger_params)
        scheduler.add_job(func, trigger, id=task_id, name=task_name, replace_existing=True)
        return
    scheduler.add_job(func, trigger_type, id=task_id, name=task_name, replace_existing=True, **trigger_params)


def _build_cron_trigger(trigger_params: dict[str, Any]) -> CronTrigger:
    """构建 CronTrigger,避免 APScheduler 自动填充默认值."""
    cron_kwargs = {field: trigger_params[field] for field in CRON_FIELDS if field in trigger_params}
    cron_kwargs["timezone"] = SCHEDULER_TIMEZONE
    return CronTrigger(**cron_kwargs)
