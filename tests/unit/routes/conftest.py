# tests/unit/routes/conftest.py
"""API 契约测试专用 fixtures.

提供 app、test_client 与应用内的分区维护执行器.
"""

import pytest

from pulse import create_app
from pulse.constants.partition_constants import RUNNER_EXTENSION_KEY
from pulse.settings import Settings


@pytest.fixture(scope="function")
def app(monkeypatch):
    """创建测试应用实例."""
    monkeypatch.setenv("FLASK_ENV", "testing")

    settings = Settings.load()
    app = create_app(init_scheduler_on_start=False, settings=settings)
    app.config["TESTING"] = True
    return app


@pytest.fixture(scope="function")
def client(app):
    """创建测试客户端."""
    return app.test_client()


@pytest.fixture(scope="function")
def runner(app):
    """应用内唯一的分区维护执行器."""
    return app.extensions[RUNNER_EXTENSION_KEY]
