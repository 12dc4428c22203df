"""分区生命周期相关常量.

集中维护受管父表集合、操作类型、分区状态码与输入阈值,避免魔法字符串散落在服务层.
"""

from __future__ import annotations

from enum import Enum
from typing import Final


class ManagedTable(str, Enum):
    """受管的按月分区父表(封闭集合)."""

    EVENTS = "events"
    GOAL_COMPLETIONS = "goal_completions"

    @classmethod
    def parse(cls, value: object) -> ManagedTable | None:
        """将外部输入解析为受管表,无法识别时返回 None."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip())
        except ValueError:
            return None


class MaintenanceOperation(str, Enum):
    """维护操作类型."""

    CREATE_FUTURE_PARTITIONS = "CREATE_FUTURE_PARTITIONS"
    ANALYZE_PARTITIONS = "ANALYZE_PARTITIONS"
    VACUUM_PARTITIONS = "VACUUM_PARTITIONS"
    DROP_OLD_PARTITIONS = "DROP_OLD_PARTITIONS"


class PartitionStatus(str, Enum):
    """单个分区的处理结果状态码."""

    CREATED = "CREATED"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    ANALYZED = "ANALYZED"
    VACUUMED = "VACUUMED"
    DROPPED = "DROPPED"
    DRY_RUN = "DRY_RUN"
    ERROR = "ERROR"


class HealthStatus(str, Enum):
    """受管表健康状态(优先级: NO_PARTITIONS > CLEANUP_NEEDED > HEALTHY)."""

    HEALTHY = "HEALTHY"
    CLEANUP_NEEDED = "CLEANUP_NEEDED"
    NO_PARTITIONS = "NO_PARTITIONS"


class PartitionDdl(str, Enum):
    """分区 DDL 模板键."""

    CREATE = "CREATE"
    DETACH = "DETACH"
    DROP = "DROP"
    ANALYZE = "ANALYZE"
    VACUUM = "VACUUM"
    VACUUM_FULL = "VACUUM_FULL"


MONTHS_AHEAD_MIN: Final[int] = 1
MONTHS_AHEAD_MAX: Final[int] = 24
DEFAULT_MONTHS_AHEAD: Final[int] = 6

RETENTION_MONTHS_MIN: Final[int] = 1
RETENTION_MONTHS_MAX: Final[int] = 120
DEFAULT_RETENTION_MONTHS: Final[int] = 12

HOUR_OF_DAY_MIN: Final[int] = 0
HOUR_OF_DAY_MAX: Final[int] = 23
MINUTE_OF_HOUR_MIN: Final[int] = 0
MINUTE_OF_HOUR_MAX: Final[int] = 59

MAINTENANCE_JOB_ID: Final[str] = "partition_maintenance"
RUNNER_EXTENSION_KEY: Final[str] = "partition_maintenance_runner"

__all__ = [
    "DEFAULT_MONTHS_AHEAD",
    "DEFAULT_RETENTION_MONTHS",
    "HOUR_OF_DAY_MAX",
    "HOUR_OF_DAY_MIN",
    "MAINTENANCE_JOB_ID",
    "MINUTE_OF_HOUR_MAX",
    "MINUTE_OF_HOUR_MIN",
    "MONTHS_AHEAD_MAX",
    "MONTHS_AHEAD_MIN",
    "RETENTION_MONTHS_MAX",
    "RETENTION_MONTHS_MIN",
    "RUNNER_EXTENSION_KEY",
    "HealthStatus",
    "MaintenanceOperation",
    "ManagedTable",
    "PartitionDdl",
    "PartitionStatus",
]
