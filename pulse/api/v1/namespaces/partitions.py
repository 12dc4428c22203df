"""Partitions namespace (分区生命周期管理)."""

from __future__ import annotations

from flask import current_app, request
from flask_restx import Namespace, fields

from pulse.api.v1.models.envelope import get_error_envelope_model, make_success_envelope_model
from pulse.api.v1.resources.base import BaseResource
from pulse.constants import HttpStatus
from pulse.constants.partition_constants import (
    DEFAULT_MONTHS_AHEAD,
    DEFAULT_RETENTION_MONTHS,
    RUNNER_EXTENSION_KEY,
)
from pulse.constants.system_constants import ErrorMessages, SuccessMessages
from pulse.errors import ConflictError, ValidationError
from pulse.services.partition.partition_actions_service import PartitionActionsService
from pulse.utils.structlog_config import log_info

MODULE = "partitions_api"

ns = Namespace("partitions", description="分区生命周期管理")

ErrorEnvelope = get_error_envelope_model(ns)

HealthSummaryData = ns.model(
    "PartitionHealthSummaryData",
    {
        "table": fields.String(required=True, example="events"),
        "partition_count": fields.Integer(required=True),
        "total_rows": fields.Integer(required=True),
        "total_size_mb": fields.Float(required=True),
        "oldest_partition": fields.String(required=False, description="最早分区起点(ISO8601)"),
        "newest_partition": fields.String(required=False, description="最新分区起点(ISO8601)"),
        "retention_months": fields.Integer(required=True),
        "partitions_to_drop": fields.Integer(required=True),
        "status": fields.String(required=True, example="HEALTHY"),
        "last_maintenance_at": fields.String(required=False, description="最近一次非演练维护完成时间(ISO8601)"),
    },
)
HealthSuccessEnvelope = make_success_envelope_model(
    ns,
    "PartitionHealthSuccessEnvelope",
    HealthSummaryData,
    as_list=True,
)

PartitionEntryData = ns.model(
    "PartitionEntryData",
    {
        "parent_table": fields.String(required=True, example="events"),
        "partition_name": fields.String(required=True, example="events_2025_03"),
        "range_start": fields.String(required=True),
        "range_end": fields.String(required=True),
        "row_count": fields.Integer(required=True),
        "size_mb": fields.Float(required=True),
        "last_analyzed_at": fields.String(required=False),
        "last_vacuumed_at": fields.String(required=False),
    },
)
PartitionListSuccessEnvelope = make_success_envelope_model(
    ns,
    "PartitionListSuccessEnvelope",
    PartitionEntryData,
    as_list=True,
)

MaintenanceStatusData = ns.model(
    "PartitionMaintenanceStatusData",
    {
        "is_running": fields.Boolean(required=True),
        "job_scheduled": fields.Boolean(required=True),
    },
)
MaintenanceStatusSuccessEnvelope = make_success_envelope_model(
    ns,
    "PartitionMaintenanceStatusSuccessEnvelope",
    MaintenanceStatusData,
)

MaintenanceLaunchData = ns.model(
    "PartitionMaintenanceLaunchData",
    {
        "dry_run": fields.Boolean(required=True),
        "started_at": fields.String(required=True),
    },
)
MaintenanceLaunchSuccessEnvelope = make_success_envelope_model(
    ns,
    "PartitionMaintenanceLaunchSuccessEnvelope",
    MaintenanceLaunchData,
)

OutcomeData = ns.model(
    "PartitionOutcomeData",
    {
        "partition_name": fields.String(required=True),
        "status": fields.String(required=True, example="CREATED"),
        "message": fields.String(required=True),
        "row_count": fields.Integer(required=False),
        "size_mb": fields.Float(required=False),
    },
)
MaintenanceResultData = ns.model(
    "PartitionMaintenanceResultData",
    {
        "operation": fields.String(required=True, example="CREATE_FUTURE_PARTITIONS"),
        "table": fields.String(required=True, example="events"),
        "results": fields.List(fields.Nested(OutcomeData), required=True),
        "success_count": fields.Integer(required=True),
        "error_count": fields.Integer(required=True),
        "months_ahead": fields.Integer(required=False),
        "retention_months": fields.Integer(required=False),
        "dry_run": fields.Boolean(required=False),
        "full": fields.Boolean(required=False),
    },
)
MaintenanceResultSuccessEnvelope = make_success_envelope_model(
    ns,
    "PartitionMaintenanceResultSuccessEnvelope",
    MaintenanceResultData,
)

MaintenancePayload = ns.model(
    "PartitionMaintenancePayload",
    {"dry_run": fields.Boolean(required=True, description="是否仅演练清理步骤")},
)
CreatePayload = ns.model(
    "PartitionCreatePayload",
    {
        "table": fields.String(required=True, example="events"),
        "months_ahead": fields.Integer(required=False, description="提前月数,默认 6,范围 1-24"),
    },
)
AnalyzePayload = ns.model(
    "PartitionAnalyzePayload",
    {"table": fields.String(required=True, example="events")},
)
VacuumPayload = ns.model(
    "PartitionVacuumPayload",
    {
        "table": fields.String(required=True, example="events"),
        "full": fields.Boolean(required=False, description="是否 VACUUM FULL,默认 false"),
    },
)
CleanupPayload = ns.model(
    "PartitionCleanupPayload",
    {
        "table": fields.String(required=True, example="events"),
        "retention_months": fields.Integer(required=False, description="保留月数,默认 12,范围 1-120"),
        "dry_run": fields.Boolean(required=True, description="是否仅演练"),
    },
)


def _actions_service() -> PartitionActionsService:
    return PartitionActionsService(current_app.extensions[RUNNER_EXTENSION_KEY])


def _json_body() -> dict[str, object]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _require_fields(data: dict[str, object], *names: str) -> None:
    missing = [name for name in names if name not in data]
    if missing:
        raise ValidationError(
            ErrorMessages.MISSING_REQUIRED_FIELDS.format(fields=", ".join(missing)),
            extra={"missing": missing},
        )


@ns.route("/health")
class PartitionHealthResource(BaseResource):
    @ns.response(200, "OK", HealthSuccessEnvelope)
    @ns.response(500, "Internal Server Error", ErrorEnvelope)
    def get(self):
        def _execute():
            summaries = _actions_service().get_health_summary()
            return self.success(data=[summary.to_dict() for summary in summaries], message="分区健康摘要获取成功")

        return self.safe_call(
            _execute,
            module=MODULE,
            action="get_partition_health",
            public_error="获取分区健康摘要失败",
        )


@ns.route("/list")
class PartitionListResource(BaseResource):
    @ns.doc(params={"table": "受管表名称(可选)"})
    @ns.response(200, "OK", PartitionListSuccessEnvelope)
    @ns.response(400, "Bad Request", ErrorEnvelope)
    @ns.response(500, "Internal Server Error", ErrorEnvelope)
    def get(self):
        table = request.args.get("table") or None

        def _execute():
            entries = _actions_service().list_partitions(table)
            return self.success(data=[entry.to_dict() for entry in entries], message="分区列表获取成功")

        return self.safe_call(
            _execute,
            module=MODULE,
            action="list_partitions",
            public_error="获取分区列表失败",
            context={"table": table},
        )


@ns.route("/status")
class PartitionStatusResource(BaseResource):
    @ns.response(200, "OK", MaintenanceStatusSuccessEnvelope)
    @ns.response(500, "Internal Server Error", ErrorEnvelope)
    def get(self):
        def _execute():
            status = _actions_service().get_status()
            return self.success(data=status.to_dict(), message="分区维护状态获取成功")

        return self.safe_call(
            _execute,
            module=MODULE,
            action="get_maintenance_status",
            public_error="获取分区维护状态失败",
        )


@ns.route("/maintenance")
class PartitionMaintenanceResource(BaseResource):
    @ns.expect(MaintenancePayload, validate=False)
    @ns.response(202, "Accepted", MaintenanceLaunchSuccessEnvelope)
    @ns.response(400, "Bad Request", ErrorEnvelope)
    @ns.response(409, "Conflict", ErrorEnvelope)
    @ns.response(500, "Internal Server Error", ErrorEnvelope)
    def post(self):
        data = _json_body()

        def _execute():
            _require_fields(data, "dry_run")
            launch = _actions_service().run_maintenance(dry_run=data["dry_run"])
            log_info("手动触发分区维护", module=MODULE, dry_run=launch.dry_run)
            return self.success(
                data=launch.to_dict(),
                message=SuccessMessages.MAINTENANCE_STARTED,
                status=HttpStatus.ACCEPTED,
            )

        return self.safe_call(
            _execute,
            module=MODULE,
            action="run_maintenance",
            public_error="启动分区维护失败",
            expected_exceptions=(ValidationError, ConflictError),
            context={"dry_run": str(data.get("dry_run"))},
        )


@ns.route("/create")
class PartitionCreateResource(BaseResource):
    @ns.expect(CreatePayload, validate=False)
    @ns.response(200, "OK", MaintenanceResultSuccessEnvelope)
    @ns.response(400, "Bad Request", ErrorEnvelope)
    @ns.response(500, "Internal Server Error", ErrorEnvelope)
    def post(self):
        data = _json_body()

        def _execute():
            _require_fields(data, "table")
            result = _actions_service().create_future_partitions(
                data["table"],
                data.get("months_ahead", DEFAULT_MONTHS_AHEAD),
            )
            return self.success(data=result.to_dict(), message=SuccessMessages.PARTITIONS_CREATED)

        return self.safe_call(
            _execute,
            module=MODULE,
            action="create_future_partitions",
            public_error="创建未来分区失败",
            expected_exceptions=(ValidationError,),
            context={"table": str(data.get("table")), "months_ahead": str(data.get("months_ahead"))},
        )


@ns.route("/analyze")
class PartitionAnalyzeResource(BaseResource):
    @ns.expect(AnalyzePayload, validate=False)
    @ns.response(200, "OK", MaintenanceResultSuccessEnvelope)
    @ns.response(400, "Bad Request", ErrorEnvelope)
    @ns.response(500, "Internal Server Error", ErrorEnvelope)
    def post(self):
        data = _json_body()

        def _execute():
            _require_fields(data, "table")
            result = _actions_service().analyze_partitions(data["table"])
            return self.success(data=result.to_dict(), message=SuccessMessages.PARTITIONS_ANALYZED)

        return self.safe_call(
            _execute,
            module=MODULE,
            action="analyze_partitions",
            public_error="刷新分区统计信息失败",
            expected_exceptions=(ValidationError,),
            context={"table": str(data.get("table"))},
        )


@ns.route("/vacuum")
class PartitionVacuumResource(BaseResource):
    @ns.expect(VacuumPayload, validate=False)
    @ns.response(200, "OK", MaintenanceResultSuccessEnvelope)
    @ns.response(400, "Bad Request", ErrorEnvelope)
    @ns.response(500, "Internal Server Error", ErrorEnvelope)
    def post(self):
        data = _json_body()

        def _execute():
            _require_fields(data, "table")
            result = _actions_service().vacuum_partitions(data["table"], data.get("full", False))
            return self.success(data=result.to_dict(), message=SuccessMessages.PARTITIONS_VACUUMED)

        return self.safe_call(
            _execute,
            module=MODULE,
            action="vacuum_partitions",
            public_error="分区空间回收失败",
            expected_exceptions=(ValidationError,),
            context={"table": str(data.get("table")), "full": str(data.get("full"))},
        )


@ns.route("/cleanup")
class PartitionCleanupResource(BaseResource):
    @ns.expect(CleanupPayload, validate=False)
    @ns.response(200, "OK", MaintenanceResultSuccessEnvelope)
    @ns.response(400, "Bad Request", ErrorEnvelope)
    @ns.response(500, "Internal Server Error", ErrorEnvelope)
    def post(self):
        data = _json_body()

        def _execute():
            _require_fields(data, "table", "dry_run")
            result = _actions_service().drop_old_partitions(
                data["table"],
                data.get("retention_months", DEFAULT_RETENTION_MONTHS),
                dry_run=data["dry_run"],
            )
            message = SuccessMessages.PARTITIONS_DRY_RUN if result.dry_run else SuccessMessages.PARTITIONS_DROPPED
            return self.success(data=result.to_dict(), message=message)

        return self.safe_call(
            _execute,
            module=MODULE,
            action="drop_old_partitions",
            public_error="清理过期分区失败",
            expected_exceptions=(ValidationError,),
            context={
                "table": str(data.get("table")),
                "retention_months": str(data.get("retention_months")),
                "dry_run": str(data.get("dry_run")),
            },
        )
