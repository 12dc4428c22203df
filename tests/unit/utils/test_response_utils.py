"""
响应工具函数单元测试
"""

import re
from typing import Any

import pytest
from flask import Flask

from pulse.constants.system_constants import ErrorCategory, ErrorSeverity, SuccessMessages
from pulse.errors import MaintenanceAlreadyRunningError, ValidationError
from pulse.utils.response_utils import (
    jsonify_unified_error,
    jsonify_unified_success,
    unified_error_response,
    unified_success_response,
)


@pytest.fixture
def flask_app() -> Any:
    """构造临时 Flask 应用，供 jsonify 系列函数使用"""
    app = Flask(__name__)
    app.config["TESTING"] = True
    return app


@pytest.mark.unit
def test_unified_success_response_default():
    """默认成功响应结构包含必要字段"""
    payload, status = unified_success_response()

    assert status == 200
    assert payload["success"] is True
    assert payload["error"] is False
    assert payload["message"] == SuccessMessages.OPERATION_SUCCESS
    assert re.match(r"\d{4}-\d{2}-\d{2}T", payload["timestamp"])
    assert "data" not in payload


@pytest.mark.unit
def test_unified_success_response_with_data():
    """成功响应包含 data 与 meta"""
    payload, status = unified_success_response(
        data={"table": "events"},
        meta={"count": 1},
        message="操作完成",
        status=202,
    )

    assert status == 202
    assert payload["data"] == {"table": "events"}
    assert payload["meta"] == {"count": 1}


@pytest.mark.unit
def test_jsonify_unified_success(flask_app: Any):
    """jsonify 版本的成功响应可直接返回 HTTP Response"""
    with flask_app.app_context():
        response, status = jsonify_unified_success(data={"key": "value"})

        assert status == 200
        assert response.get_json()["data"] == {"key": "value"}


@pytest.mark.unit
def test_unified_error_response_from_app_error():
    """AppError 子类可正确映射到 HTTP 状态码与分类"""
    payload, status = unified_error_response(ValidationError("参数错误", extra={"field": "months_ahead"}))

    assert status == 400
    assert payload["success"] is False
    assert payload["error"] is True
    assert payload["category"] == ErrorCategory.VALIDATION.value
    assert payload["severity"] == ErrorSeverity.LOW.value
    assert payload["recoverable"] is True
    assert payload["message"] == "参数错误"
    assert payload["extra"] == {"field": "months_ahead"}


@pytest.mark.unit
def test_unified_error_response_for_running_maintenance():
    """维护冲突映射为 409 且带有稳定的 message_code"""
    payload, status = unified_error_response(MaintenanceAlreadyRunningError())

    assert status == 409
    assert payload["message_code"] == "MAINTENANCE_ALREADY_RUNNING"


@pytest.mark.unit
def test_unified_error_response_for_unknown_exception():
    """未知异常按 500 处理"""
    payload, status = unified_error_response(RuntimeError("boom"))

    assert status == 500
    assert payload["error"] is True


@pytest.mark.unit
def test_jsonify_unified_error(flask_app: Any):
    """jsonify 版本的错误响应携带请求上下文"""
    with flask_app.test_request_context("/api/v1/partitions/cleanup", method="POST"):
        response, status = jsonify_unified_error(ValidationError("缺少 dry_run"))

        assert status == 400
        data = response.get_json()
        assert data["message"] == "缺少 dry_run"
        assert data["context"]["method"] == "POST"
