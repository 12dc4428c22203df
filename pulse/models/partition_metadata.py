"""Pulse - 分区目录模型.

记录由本系统创建或登记的每个月度分区,是健康摘要与保留期清理的唯一数据来源.
"""

from pulse import db
from pulse.utils.time_utils import time_utils


class PartitionMetadata(db.Model):
    """分区目录条目.

    Attributes:
        id: 主键 ID.
        parent_table: 所属受管父表名称.
        partition_name: 分区表名称(唯一),格式 ``{table}_{YYYY}_{MM}``.
        range_start: 分区下界(包含,UTC).
        range_end: 分区上界(不包含,UTC).
        row_count: 最近一次统计的行数.
        size_bytes: 最近一次统计的总占用字节数.
        created_at: 登记时间.
        last_analyzed_at: 最近一次 ANALYZE 时间.
        last_vacuumed_at: 最近一次 VACUUM 时间.

    """

    __tablename__ = "partition_metadata"
    __table_args__ = (
        db.Index("idx_partition_metadata_parent_table", "parent_table", db.text("range_start DESC")),
    )

    id = db.Column(db.Integer, primary_key=True)
    parent_table = db.Column(db.String(255), nullable=False, comment="受管父表")
    partition_name = db.Column(db.String(255), unique=True, nullable=False, comment="分区表名称")
    range_start = db.Column(db.DateTime(timezone=True), nullable=False, comment="分区下界(包含)")
    range_end = db.Column(db.DateTime(timezone=True), nullable=False, comment="分区上界(不包含)")
    row_count = db.Column(db.BigInteger, nullable=False, default=0, comment="行数")
    size_bytes = db.Column(db.BigInteger, nullable=False, default=0, comment="占用字节数")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=time_utils.now, comment="登记时间")
    last_analyzed_at = db.Column(db.DateTime(timezone=True), nullable=True, comment="最近 ANALYZE 时间")
    last_vacuumed_at = db.Column(db.DateTime(timezone=True), nullable=True, comment="最近 VACUUM 时间")

    def __repr__(self) -> str:
        return f"<PartitionMetadata {self.partition_name}>"
