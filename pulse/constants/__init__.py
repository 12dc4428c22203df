"""常量模块。

集中管理系统常量，包括错误消息、HTTP 状态码与分区维护常量。

主要常量：
- ErrorMessages / SuccessMessages: 对外文案
- HttpStatus: HTTP 状态码常量
- ManagedTable / PartitionStatus / HealthStatus: 分区维护枚举
"""

# 导入HTTP状态码常量（使用Python标准库）
from http import HTTPStatus as HttpStatus

# 导入分区维护常量
from .partition_constants import (
    HealthStatus,
    MaintenanceOperation,
    ManagedTable,
    PartitionDdl,
    PartitionStatus,
)

# 导入所有系统常量
from .system_constants import (
    ErrorCategory,
    ErrorMessages,
    ErrorSeverity,
    SuccessMessages,
)

# 导出所有常量
__all__ = [
    "ErrorCategory",
    "ErrorMessages",
    "ErrorSeverity",
    "HealthStatus",
    "HttpStatus",
    "MaintenanceOperation",
    "ManagedTable",
    "PartitionDdl",
    "PartitionStatus",
    "SuccessMessages",
]
