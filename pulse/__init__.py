"""Pulse - Flask 应用初始化.

多租户分析后端的分区生命周期管理服务.
"""

import logging
from importlib import import_module
from logging.handlers import RotatingFileHandler
from pathlib import Path

from flask import Flask, jsonify, request
from flask.typing import ResponseReturnValue
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

from pulse.constants.partition_constants import RUNNER_EXTENSION_KEY
from pulse.scheduler import init_scheduler
from pulse.settings import Settings
from pulse.utils.response_utils import unified_error_response
from pulse.utils.structlog_config import (
    ErrorContext,
    configure_structlog,
    get_system_logger,
)

# 初始化扩展
db = SQLAlchemy()
migrate = Migrate()


def create_app(
    *,
    init_scheduler_on_start: bool = True,
    settings: Settings | None = None,
) -> Flask:
    """创建Flask应用实例.

    Args:
        init_scheduler_on_start: 是否在创建应用时初始化调度器
        settings: 可选的配置对象,用于测试或多环境启动.

    Returns:
        Flask: Flask应用实例

    """
    resolved_settings = settings or Settings.load()
    app = Flask(__name__)

    # 配置应用
    configure_app(app, resolved_settings)

    # 初始化扩展
    initialize_extensions(app)

    # 注册蓝图
    configure_blueprints(app, resolved_settings)

    # 配置日志
    configure_logging(app)

    # 配置统一日志系统
    configure_structlog(app)

    # 设置全局日志级别
    log_level_name = str(app.config.get("LOG_LEVEL", "INFO"))
    logging.getLogger().setLevel(getattr(logging, log_level_name, logging.INFO))

    # 注册全局错误处理器
    @app.errorhandler(Exception)
    def handle_global_exception(error: Exception) -> ResponseReturnValue:
        """全局错误处理."""
        payload, status_code = unified_error_response(error, context=ErrorContext(error, request))
        return jsonify(payload), status_code

    runner = configure_partition_maintenance(app)

    if init_scheduler_on_start:
        try:
            init_scheduler(app, runner)
        except Exception:
            # 调度器初始化失败不影响应用启动
            scheduler_logger = get_system_logger()
            scheduler_logger.exception("调度器初始化失败,应用将继续启动", module="scheduler")

    return app


def configure_app(app: Flask, settings: Settings) -> None:
    """写入 Settings 提供的配置."""
    app.config.from_mapping(settings.to_flask_config())
    if settings.environment.strip().lower() in {"testing", "test"}:
        app.config["TESTING"] = True


def initialize_extensions(app: Flask) -> None:
    """初始化 Flask 扩展."""
    db.init_app(app)
    migrate.init_app(app, db)


def configure_blueprints(app: Flask, settings: Settings) -> None:
    """注册 `/api/v1` 蓝图."""
    api_v1 = import_module("pulse.api.v1")
    app.register_blueprint(api_v1.create_api_v1_blueprint(settings), url_prefix="/api/v1")


def configure_partition_maintenance(app: Flask):
    """创建进程内唯一的分区维护执行器并挂到 app.extensions."""
    runner_module = import_module("pulse.services.partition.partition_maintenance_runner")
    runner = runner_module.PartitionMaintenanceRunner(app)
    app.extensions[RUNNER_EXTENSION_KEY] = runner
    return runner


def configure_logging(app: Flask) -> None:
    """配置日志系统与文件处理器.

    Args:
        app: Flask 应用实例.

    """
    if not app.debug and not app.testing:
        log_path = Path(app.config["LOG_FILE"])
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=app.config["LOG_MAX_SIZE"],
            backupCount=app.config["LOG_BACKUP_COUNT"],
        )
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]"),
        )
        file_handler.setLevel(getattr(logging, app.config["LOG_LEVEL"]))
        app.logger.addHandler(file_handler)

        app.logger.setLevel(getattr(logging, app.config["LOG_LEVEL"]))
        app.logger.info("Pulse 应用启动")


from pulse.models import partition_config, partition_metadata  # noqa: F401, E402
