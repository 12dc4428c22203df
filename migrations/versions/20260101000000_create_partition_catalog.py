"""创建分区目录与单表维护配置.

Revision ID: 20260101000000
Revises:
Create Date: 2026-01-01

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "20260101000000"
down_revision = None
branch_labels = None
depends_on = None

SEEDED_TABLES = ("events", "goal_completions")


def upgrade() -> None:
    """执行升级迁移.

    创建 `partition_metadata` 与 `partition_config`,并为每张受管表写入默认配置
    (保留 12 个月,提前 6 个月,启用).

    Returns:
        None: 升级迁移执行完成后返回.

    """
    op.create_table(
        "partition_metadata",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("parent_table", sa.String(length=255), nullable=False, comment="受管父表"),
        sa.Column("partition_name", sa.String(length=255), nullable=False, comment="分区表名称"),
        sa.Column("range_start", sa.DateTime(timezone=True), nullable=False, comment="分区下界(包含)"),
        sa.Column("range_end", sa.DateTime(timezone=True), nullable=False, comment="分区上界(不包含)"),
        sa.Column("row_count", sa.BigInteger(), nullable=False, server_default="0", comment="行数"),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False, server_default="0", comment="占用字节数"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
            comment="登记时间",
        ),
        sa.Column("last_analyzed_at", sa.DateTime(timezone=True), nullable=True, comment="最近 ANALYZE 时间"),
        sa.Column("last_vacuumed_at", sa.DateTime(timezone=True), nullable=True, comment="最近 VACUUM 时间"),
        sa.UniqueConstraint("partition_name", name="uq_partition_metadata_partition_name"),
    )
    op.create_index(
        "idx_partition_metadata_parent_table",
        "partition_metadata",
        ["parent_table", sa.text("range_start DESC")],
    )

    config_table = op.create_table(
        "partition_config",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("table_name", sa.String(length=255), nullable=False, comment="受管父表"),
        sa.Column("retention_months", sa.Integer(), nullable=False, server_default="12", comment="保留月数"),
        sa.Column("future_partitions", sa.Integer(), nullable=False, server_default="6", comment="提前创建月数"),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.true(), comment="是否启用"),
        sa.Column("last_maintenance_at", sa.DateTime(timezone=True), nullable=True, comment="最近维护时间"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=True,
            server_default=sa.text("CURRENT_TIMESTAMP"),
            comment="创建时间",
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=True,
            server_default=sa.text("CURRENT_TIMESTAMP"),
            comment="更新时间",
        ),
        sa.UniqueConstraint("table_name", name="uq_partition_config_table_name"),
    )
    op.bulk_insert(
        config_table,
        [
            {"table_name": table, "retention_months": 12, "future_partitions": 6, "is_enabled": True}
            for table in SEEDED_TABLES
        ],
    )


def downgrade() -> None:
    """执行降级迁移.

    删除两张目录表;已创建的分区表本身不受影响.

    Returns:
        None: 降级迁移执行完成后返回.

    """
    op.drop_table("partition_config")
    op.drop_index("idx_partition_metadata_parent_table", table_name="partition_metadata")
    op.drop_table("partition_metadata")
