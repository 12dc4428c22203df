"""Pulse - 受管父表维护配置模型."""

from pulse import db
from pulse.utils.time_utils import time_utils


class PartitionConfig(db.Model):
    """单张受管父表的分区维护配置.

    每日维护只处理 ``is_enabled`` 为真的配置;缺少配置行的受管表回退到 Settings 默认值.

    Attributes:
        id: 主键 ID.
        table_name: 受管父表名称(唯一).
        retention_months: 保留月数.
        future_partitions: 提前创建的月数.
        is_enabled: 是否参与每日维护.
        last_maintenance_at: 最近一次非演练维护完成时间.
        created_at: 创建时间.
        updated_at: 更新时间.

    """

    __tablename__ = "partition_config"

    id = db.Column(db.Integer, primary_key=True)
    table_name = db.Column(db.String(255), unique=True, nullable=False, comment="受管父表")
    retention_months = db.Column(db.Integer, nullable=False, default=12, comment="保留月数")
    future_partitions = db.Column(db.Integer, nullable=False, default=6, comment="提前创建月数")
    is_enabled = db.Column(db.Boolean, nullable=False, default=True, comment="是否启用")
    last_maintenance_at = db.Column(db.DateTime(timezone=True), nullable=True, comment="最近维护时间")
    created_at = db.Column(db.DateTime(timezone=True), default=time_utils.now, comment="创建时间")
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=time_utils.now,
        onupdate=time_utils.now,
        comment="更新时间",
    )

    def __repr__(self) -> str:
        return f"<PartitionConfig {self.table_name}>"
