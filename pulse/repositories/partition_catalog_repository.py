"""分区目录 Repository.

职责:
- 按固定模板生成并执行分区 DDL(CREATE/DETACH/DROP/ANALYZE/VACUUM)
- 读写 partition_metadata / partition_config 目录
- 不做业务编排、不返回 Response、不 commit
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from sqlalchemy import delete, func, select, text
from sqlalchemy.sql import table

from pulse import db
from pulse.constants.partition_constants import PartitionDdl
from pulse.models.partition_config import PartitionConfig
from pulse.models.partition_metadata import PartitionMetadata
from pulse.utils.structlog_config import log_debug

if TYPE_CHECKING:
    from datetime import datetime

    from pulse.types.partition import PartitionBounds

IDENTIFIER_PATTERN = re.compile(r"^[a-z][a-z0-9_]*$")

DDL_TEMPLATES: dict[PartitionDdl, str] = {
    PartitionDdl.CREATE: "CREATE TABLE {partition} PARTITION OF {parent} FOR VALUES FROM ('{start}') TO ('{end}')",
    PartitionDdl.DETACH: "ALTER TABLE {parent} DETACH PARTITION {partition}",
    PartitionDdl.DROP: "DROP TABLE IF EXISTS {partition}",
    PartitionDdl.ANALYZE: "ANALYZE {partition}",
    PartitionDdl.VACUUM: "VACUUM {partition}",
    PartitionDdl.VACUUM_FULL: "VACUUM FULL {partition}",
}


def _quote(identifier: str) -> str:
    """校验并按当前方言引用标识符.

    Raises:
        ValueError: 标识符不是小写字母开头的 ``[a-z0-9_]`` 串时抛出.

    """
    if not IDENTIFIER_PATTERN.fullmatch(identifier):
        msg = f"非法分区标识符: {identifier}"
        raise ValueError(msg)
    return db.session.get_bind().dialect.identifier_preparer.quote(identifier)


def render_ddl(kind: PartitionDdl, bounds: PartitionBounds) -> str:
    """渲染指定类型的分区 DDL.

    标识符只来自命名函数推导出的 ``bounds``,边界值为 ISO-8601 字面量.
    """
    statement = DDL_TEMPLATES[kind].format(
        partition=_quote(bounds.name),
        parent=_quote(bounds.parent_table.value),
        start=bounds.start.isoformat(),
        end=bounds.end.isoformat(),
    )
    log_debug("渲染分区 DDL", module="partition_repository", ddl=kind.value, statement=statement)
    return statement


class PartitionCatalogRepository:
    """分区 DDL 与分区目录 Repository(PostgreSQL)."""

    # ------------------------------------------------------------------------------
    # 物理分区
    # ------------------------------------------------------------------------------
    @staticmethod
    def partition_table_exists(*, bounds: PartitionBounds) -> bool:
        """检查分区表是否在当前 schema 中物理存在."""
        query = """
        SELECT EXISTS (
            SELECT 1 FROM information_schema.tables
            WHERE table_schema = current_schema()
              AND table_name = :partition_name
        );
        """
        result = db.session.execute(text(query), {"partition_name": bounds.name}).scalar()
        return bool(result)

    @staticmethod
    def create_partition_table(*, bounds: PartitionBounds) -> None:
        """创建月度分区表."""
        db.session.execute(text(render_ddl(PartitionDdl.CREATE, bounds)))

    @staticmethod
    def detach_partition(*, bounds: PartitionBounds) -> None:
        """将分区从父表分离."""
        db.session.execute(text(render_ddl(PartitionDdl.DETACH, bounds)))

    @staticmethod
    def drop_partition_table(*, bounds: PartitionBounds) -> None:
        """删除(已分离的)分区表."""
        db.session.execute(text(render_ddl(PartitionDdl.DROP, bounds)))

    @staticmethod
    def analyze_partition(*, bounds: PartitionBounds) -> None:
        """刷新分区统计信息."""
        db.session.execute(text(render_ddl(PartitionDdl.ANALYZE, bounds)))

    @staticmethod
    def vacuum_partition(*, bounds: PartitionBounds, full: bool = False) -> None:
        """回收分区空间.

        PostgreSQL 不允许在事务块内执行 VACUUM,因此使用独立的 AUTOCOMMIT 连接.
        """
        statement = text(render_ddl(PartitionDdl.VACUUM_FULL if full else PartitionDdl.VACUUM, bounds))
        with db.engine.connect().execution_options(isolation_level="AUTOCOMMIT") as connection:
            connection.execute(statement)

    @staticmethod
    def count_rows(*, bounds: PartitionBounds) -> int:
        """查询分区表记录数."""
        stmt = select(func.count()).select_from(table(bounds.name))
        result = db.session.execute(stmt).scalar()
        return int(result or 0)

    @staticmethod
    def fetch_total_relation_size(*, bounds: PartitionBounds) -> int:
        """查询分区表总占用字节数(含索引与 TOAST)."""
        query = "SELECT pg_total_relation_size(CAST(:partition_name AS regclass))"
        result = db.session.execute(text(query), {"partition_name": bounds.name}).scalar()
        return int(result or 0)

    # ------------------------------------------------------------------------------
    # 分区目录 partition_metadata
    # ------------------------------------------------------------------------------
    @staticmethod
    def list_metadata(*, parent_table: str | None = None) -> list[PartitionMetadata]:
        """按父表、分区起点倒序列出目录条目."""
        stmt = select(PartitionMetadata)
        if parent_table is not None:
            stmt = stmt.where(PartitionMetadata.parent_table == parent_table)
        stmt = stmt.order_by(PartitionMetadata.parent_table.asc(), PartitionMetadata.range_start.desc())
        return list(db.session.execute(stmt).scalars().all())

    @staticmethod
    def get_metadata(*, partition_name: str) -> PartitionMetadata | None:
        """按分区名称获取目录条目."""
        stmt = select(PartitionMetadata).where(PartitionMetadata.partition_name == partition_name)
        return db.session.execute(stmt).scalars().first()

    @staticmethod
    def register_metadata(*, bounds: PartitionBounds) -> PartitionMetadata:
        """登记分区目录条目(已存在时原样返回)."""
        existing = PartitionCatalogRepository.get_metadata(partition_name=bounds.name)
        if existing is not None:
            return existing
        entry = PartitionMetadata(
            parent_table=bounds.parent_table.value,
            partition_name=bounds.name,
            range_start=bounds.start,
            range_end=bounds.end,
        )
        db.session.add(entry)
        db.session.flush()
        return entry

    @staticmethod
    def delete_metadata(*, partition_name: str) -> int:
        """删除目录条目,返回删除行数."""
        stmt = delete(PartitionMetadata).where(PartitionMetadata.partition_name == partition_name)
        result = db.session.execute(stmt)
        return int(result.rowcount or 0)

    @staticmethod
    def update_statistics(
        *,
        partition_name: str,
        row_count: int,
        size_bytes: int,
        analyzed_at: datetime,
    ) -> None:
        """写入 ANALYZE 后的行数与占用."""
        entry = PartitionCatalogRepository.get_metadata(partition_name=partition_name)
        if entry is None:
            return
        entry.row_count = row_count
        entry.size_bytes = size_bytes
        entry.last_analyzed_at = analyzed_at
        db.session.flush()

    @staticmethod
    def mark_vacuumed(*, partition_name: str, vacuumed_at: datetime) -> None:
        """记录 VACUUM 完成时间."""
        entry = PartitionCatalogRepository.get_metadata(partition_name=partition_name)
        if entry is None:
            return
        entry.last_vacuumed_at = vacuumed_at
        db.session.flush()

    # ------------------------------------------------------------------------------
    # 维护配置 partition_config
    # ------------------------------------------------------------------------------
    @staticmethod
    def list_configs() -> list[PartitionConfig]:
        """列出全部受管表配置."""
        stmt = select(PartitionConfig).order_by(PartitionConfig.table_name.asc())
        return list(db.session.execute(stmt).scalars().all())

    @staticmethod
    def touch_last_maintenance(*, table_name: str, maintained_at: datetime) -> None:
        """更新受管表最近维护时间."""
        stmt = select(PartitionConfig).where(PartitionConfig.table_name == table_name)
        config = db.session.execute(stmt).scalars().first()
        if config is None:
            return
        config.last_maintenance_at = maintained_at
        db.session.flush()
