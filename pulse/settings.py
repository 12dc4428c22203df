"""Pulse - 统一配置读取与校验.

目标:
- 将环境变量读取、默认值、校验集中到单一入口,避免散落在各模块中重复解析.
- `create_app(settings=...)` 只消费 Settings,不再直接读取环境变量.

说明:
- Settings 使用 `pydantic-settings` 的 `BaseSettings` 从环境变量与本地 `.env`(可选)读取配置.
- 生产环境默认更严格: 缺失关键密钥/连接串会直接抛出 ValueError.
- 分区维护的默认提前月数/保留月数可被 `partition_config` 表中的单表配置覆盖.
"""

from __future__ import annotations

import logging
import secrets
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from pulse.constants.partition_constants import (
    DEFAULT_MONTHS_AHEAD,
    DEFAULT_RETENTION_MONTHS,
    HOUR_OF_DAY_MAX,
    HOUR_OF_DAY_MIN,
    MINUTE_OF_HOUR_MAX,
    MINUTE_OF_HOUR_MIN,
    MONTHS_AHEAD_MAX,
    MONTHS_AHEAD_MIN,
    RETENTION_MONTHS_MAX,
    RETENTION_MONTHS_MIN,
)

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DOTENV_PATH = PROJECT_ROOT / ".env"

DEFAULT_ENVIRONMENT = "development"
APP_VERSION = "1.0.0"

DEFAULT_DB_CONNECTION_TIMEOUT_SECONDS = 30
DEFAULT_DB_MAX_CONNECTIONS = 20
DEFAULT_SQLALCHEMY_POOL_RECYCLE_SECONDS = 300
DEFAULT_SQLALCHEMY_MAX_OVERFLOW = 10

DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_LOG_FILE = "userdata/logs/app.log"
DEFAULT_LOG_MAX_SIZE_BYTES = 10 * 1024 * 1024
DEFAULT_LOG_BACKUP_COUNT = 5

DEFAULT_API_V1_DOCS_ENABLED = True
DEFAULT_ENABLE_SCHEDULER = True

DEFAULT_PARTITION_MAINTENANCE_ENABLED = True
DEFAULT_PARTITION_MAINTENANCE_HOUR = 2
DEFAULT_PARTITION_MAINTENANCE_MINUTE = 0


def _resolve_sqlite_fallback_url() -> str:
    db_path = _resolve_sqlite_fallback_path()
    return f"sqlite:///{db_path.absolute()}"


def _resolve_sqlite_fallback_path() -> Path:
    return PROJECT_ROOT / "userdata" / "pulse_dev.db"


class Settings(BaseSettings):
    """应用运行时设置集合."""

    model_config = SettingsConfigDict(
        env_ignore_empty=True,
        extra="ignore",
        frozen=True,
        str_strip_whitespace=True,
    )

    environment: str = Field(default=DEFAULT_ENVIRONMENT, validation_alias="FLASK_ENV")
    debug: bool = Field(default=False, validation_alias="FLASK_DEBUG")

    app_name: str = Field(default="Pulse", validation_alias="APP_NAME")
    app_version: str = APP_VERSION

    secret_key: str = Field(default="", validation_alias="SECRET_KEY")

    database_url: str = Field(default="", validation_alias="DATABASE_URL")
    db_connection_timeout_seconds: int = Field(
        default=DEFAULT_DB_CONNECTION_TIMEOUT_SECONDS,
        validation_alias="DB_CONNECTION_TIMEOUT",
    )
    db_max_connections: int = Field(default=DEFAULT_DB_MAX_CONNECTIONS, validation_alias="DB_MAX_CONNECTIONS")

    log_level: str = Field(default=DEFAULT_LOG_LEVEL, validation_alias="LOG_LEVEL")
    log_file: str = Field(default=DEFAULT_LOG_FILE, validation_alias="LOG_FILE")
    log_max_size_bytes: int = Field(default=DEFAULT_LOG_MAX_SIZE_BYTES, validation_alias="LOG_MAX_SIZE")
    log_backup_count: int = Field(default=DEFAULT_LOG_BACKUP_COUNT, validation_alias="LOG_BACKUP_COUNT")

    api_v1_docs_enabled: bool = Field(default=DEFAULT_API_V1_DOCS_ENABLED, validation_alias="API_V1_DOCS_ENABLED")

    enable_scheduler: bool = Field(default=DEFAULT_ENABLE_SCHEDULER, validation_alias="ENABLE_SCHEDULER")
    server_software: str = Field(default="", validation_alias="SERVER_SOFTWARE")
    flask_run_from_cli: bool = Field(default=False, validation_alias="FLASK_RUN_FROM_CLI")
    werkzeug_run_main: bool = Field(default=False, validation_alias="WERKZEUG_RUN_MAIN")

    partition_maintenance_enabled: bool = Field(
        default=DEFAULT_PARTITION_MAINTENANCE_ENABLED,
        validation_alias="ENABLE_PARTITION_MAINTENANCE",
    )
    partition_maintenance_hour: int = Field(
        default=DEFAULT_PARTITION_MAINTENANCE_HOUR,
        validation_alias="PARTITION_MAINTENANCE_HOUR",
    )
    partition_maintenance_minute: int = Field(
        default=DEFAULT_PARTITION_MAINTENANCE_MINUTE,
        validation_alias="PARTITION_MAINTENANCE_MINUTE",
    )
    partition_months_ahead: int = Field(default=DEFAULT_MONTHS_AHEAD, validation_alias="PARTITION_MONTHS_AHEAD")
    partition_retention_months: int = Field(
        default=DEFAULT_RETENTION_MONTHS,
        validation_alias="PARTITION_RETENTION_MONTHS",
    )

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        return value.upper()

    @property
    def sqlalchemy_engine_options(self) -> dict[str, object]:
        """生成 SQLAlchemy Engine 配置选项."""
        if self.database_url.startswith("sqlite"):
            return {"pool_pre_ping": True, "connect_args": {"check_same_thread": False}}
        return {
            "pool_pre_ping": True,
            "pool_recycle": DEFAULT_SQLALCHEMY_POOL_RECYCLE_SECONDS,
            "pool_timeout": self.db_connection_timeout_seconds,
            "max_overflow": DEFAULT_SQLALCHEMY_MAX_OVERFLOW,
            "pool_size": self.db_max_connections,
            "echo": bool(self.debug),
        }

    def to_flask_config(self) -> dict[str, object]:
        """转换为 Flask app.config 可写入的配置字典."""
        return {
            "ENV": self.environment,
            "DEBUG": self.debug,
            "APP_NAME": self.app_name,
            "APP_VERSION": self.app_version,
            "SECRET_KEY": self.secret_key,
            "SQLALCHEMY_DATABASE_URI": self.database_url,
            "SQLALCHEMY_TRACK_MODIFICATIONS": False,
            "SQLALCHEMY_ENGINE_OPTIONS": dict(self.sqlalchemy_engine_options),
            "LOG_LEVEL": self.log_level,
            "LOG_FILE": self.log_file,
            "LOG_MAX_SIZE": self.log_max_size_bytes,
            "LOG_BACKUP_COUNT": self.log_backup_count,
            "API_V1_DOCS_ENABLED": self.api_v1_docs_enabled,
            "ENABLE_SCHEDULER": self.enable_scheduler,
            "SERVER_SOFTWARE": self.server_software,
            "FLASK_RUN_FROM_CLI": self.flask_run_from_cli,
            "WERKZEUG_RUN_MAIN": self.werkzeug_run_main,
            "PARTITION_MAINTENANCE_ENABLED": self.partition_maintenance_enabled,
            "PARTITION_MAINTENANCE_HOUR": self.partition_maintenance_hour,
            "PARTITION_MAINTENANCE_MINUTE": self.partition_maintenance_minute,
            "PARTITION_MONTHS_AHEAD": self.partition_months_ahead,
            "PARTITION_RETENTION_MONTHS": self.partition_retention_months,
        }

    @classmethod
    def load(cls) -> Settings:
        """从环境变量加载 Settings 并执行必要校验."""
        load_dotenv(dotenv_path=DOTENV_PATH if DOTENV_PATH.exists() else None, override=False)
        return cls()

    @model_validator(mode="after")
    def _apply_defaults_and_validate(self) -> Settings:
        environment_normalized = self.environment.strip().lower()

        debug = self._resolve_debug(environment_normalized)
        self._ensure_secret_key(debug)
        self._ensure_database_url(environment_normalized)
        self._apply_api_docs_default(environment_normalized)

        self._validate()
        return self

    def _resolve_debug(self, environment_normalized: str) -> bool:
        if "debug" in self.model_fields_set:
            return bool(self.debug)
        debug = environment_normalized != "production"
        object.__setattr__(self, "debug", debug)
        return debug

    def _ensure_secret_key(self, debug: bool) -> None:
        if self.secret_key:
            return
        if not debug:
            raise ValueError("SECRET_KEY environment variable must be set in production")
        object.__setattr__(self, "secret_key", secrets.token_urlsafe(32))
        logger.warning("⚠️  开发环境使用随机生成的SECRET_KEY,生产环境请设置环境变量")

    def _ensure_database_url(self, environment_normalized: str) -> None:
        if self.database_url:
            return
        if environment_normalized == "production":
            raise ValueError("DATABASE_URL environment variable must be set in production")

        object.__setattr__(self, "database_url", _resolve_sqlite_fallback_url())
        if environment_normalized not in {"testing", "test"}:
            logger.warning(
                "⚠️  未设置 DATABASE_URL, 非 production 环境将回退 SQLite (sqlite_db_file=%s), 分区 DDL 不可用",
                _resolve_sqlite_fallback_path().name,
            )

    def _apply_api_docs_default(self, environment_normalized: str) -> None:
        if environment_normalized != "production":
            return
        if "api_v1_docs_enabled" in self.model_fields_set:
            return
        object.__setattr__(self, "api_v1_docs_enabled", False)

    def _validate(self) -> None:
        """执行跨字段校验,统一抛出可读的 ValueError."""
        errors: list[str] = []
        checks: list[tuple[str, bool]] = [
            ("DB_CONNECTION_TIMEOUT 必须为正整数", self.db_connection_timeout_seconds <= 0),
            ("DB_MAX_CONNECTIONS 必须为正整数", self.db_max_connections <= 0),
            ("LOG_BACKUP_COUNT 必须为非负整数", self.log_backup_count < 0),
            (
                f"PARTITION_MAINTENANCE_HOUR 必须为 {HOUR_OF_DAY_MIN}-{HOUR_OF_DAY_MAX} 的整数",
                not HOUR_OF_DAY_MIN <= self.partition_maintenance_hour <= HOUR_OF_DAY_MAX,
            ),
            (
                f"PARTITION_MAINTENANCE_MINUTE 必须为 {MINUTE_OF_HOUR_MIN}-{MINUTE_OF_HOUR_MAX} 的整数",
                not MINUTE_OF_HOUR_MIN <= self.partition_maintenance_minute <= MINUTE_OF_HOUR_MAX,
            ),
            (
                f"PARTITION_MONTHS_AHEAD 必须为 {MONTHS_AHEAD_MIN}-{MONTHS_AHEAD_MAX} 的整数",
                not MONTHS_AHEAD_MIN <= self.partition_months_ahead <= MONTHS_AHEAD_MAX,
            ),
            (
                f"PARTITION_RETENTION_MONTHS 必须为 {RETENTION_MONTHS_MIN}-{RETENTION_MONTHS_MAX} 的整数",
                not RETENTION_MONTHS_MIN <= self.partition_retention_months <= RETENTION_MONTHS_MAX,
            ),
        ]
        for message, condition in checks:
            if condition:
                errors.append(message)

        if errors:
            joined = "; ".join(errors)
            raise ValueError(f"配置校验失败: {joined}")
