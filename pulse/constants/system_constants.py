"""Pulse - 常量定义模块

统一管理错误分类、严重度与对外文案.
"""

from enum import Enum


class ErrorCategory(Enum):
    """错误分类枚举."""

    VALIDATION = "validation"
    BUSINESS = "business"
    DATABASE = "database"
    NETWORK = "network"
    SYSTEM = "system"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """错误严重程度枚举."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# 错误消息常量
class ErrorMessages:
    """错误消息常量."""

    # 通用错误
    INTERNAL_ERROR = "服务器内部错误"
    VALIDATION_ERROR = "数据验证失败"
    RESOURCE_NOT_FOUND = "资源不存在"
    INVALID_REQUEST = "无效的请求"
    MISSING_REQUIRED_FIELDS = "缺少必需字段: {fields}"

    # 数据库错误
    DATABASE_QUERY_ERROR = "数据库查询错误"
    DATABASE_TIMEOUT = "数据库操作超时"
    CONSTRAINT_VIOLATION = "数据约束错误"

    # 分区维护
    UNMANAGED_TABLE = "不受管理的分区表: {table}"
    MAINTENANCE_ALREADY_RUNNING = "分区维护任务正在运行,请稍后再试"


# 成功消息常量
class SuccessMessages:
    """成功消息常量."""

    OPERATION_SUCCESS = "操作成功"

    # 分区维护
    PARTITIONS_CREATED = "未来分区创建完成"
    PARTITIONS_ANALYZED = "分区统计信息已刷新"
    PARTITIONS_VACUUMED = "分区空间回收完成"
    PARTITIONS_DROPPED = "过期分区已删除"
    PARTITIONS_DRY_RUN = "过期分区预览完成(未执行删除)"
    MAINTENANCE_STARTED = "分区维护任务已启动"


__all__ = [
    "ErrorCategory",
    "ErrorMessages",
    "ErrorSeverity",
    "SuccessMessages",
]
