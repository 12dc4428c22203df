"""数据模型模块.

定义分区目录相关的数据库模型.

主要模型:
- PartitionMetadata: 分区目录(每个月度分区一行)
- PartitionConfig: 受管父表的维护配置
"""

__all__ = [
    "PartitionConfig",
    "PartitionMetadata",
]


def __getattr__(name: str):
    """延迟加载模型, 避免初始化周期引发的循环导入."""

    if name not in __all__:
        msg = f"module 'pulse.models' has no attribute {name}"
        raise AttributeError(msg)

    from importlib import import_module

    module_map = {
        "PartitionConfig": "pulse.models.partition_config",
        "PartitionMetadata": "pulse.models.partition_metadata",
    }
    module = import_module(module_map[name])
    return getattr(module, name)
