"""定时任务模块."""
