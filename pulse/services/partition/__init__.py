"""分区生命周期服务.

- partition_naming: 分区名称与月度边界推导
- partition_maintenance_service: 创建/统计/回收/清理分区
- partition_health_service: 分区目录健康摘要
- partition_maintenance_runner: 每日维护流程与互斥保护
- partition_actions_service: 对外操作入口(路由/任务共用)
"""
