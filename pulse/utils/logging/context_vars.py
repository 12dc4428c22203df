"""结构化日志模块共享的上下文变量。."""

from contextvars import ContextVar

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
maintenance_run_id_var: ContextVar[str | None] = ContextVar("maintenance_run_id", default=None)

__all__ = ["maintenance_run_id_var", "request_id_var"]
