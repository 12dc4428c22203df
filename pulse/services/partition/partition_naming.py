"""分区名称与月度边界推导.

纯函数,不做任何 I/O: 同一 (表, 年月) 输入永远得到同一名称与边界.
"""

from __future__ import annotations

import calendar
import re
from dataclasses import dataclass
from datetime import UTC, datetime

from pulse.constants.partition_constants import ManagedTable
from pulse.types.partition import PartitionBounds

MONTHS_PER_YEAR = 12
PARTITION_SUFFIX_PATTERN = re.compile(r"^(?P<year>\d{4})_(?P<month>\d{2})$")


@dataclass(frozen=True, slots=True, order=True)
class YearMonth:
    """日历年月."""

    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= MONTHS_PER_YEAR:
            msg = f"月份必须在 1-12 之间: {self.month}"
            raise ValueError(msg)

    @classmethod
    def from_datetime(cls, moment: datetime) -> YearMonth:
        """取时间点(按 UTC 解释)所在的年月."""
        if moment.tzinfo is not None:
            moment = moment.astimezone(UTC)
        return cls(moment.year, moment.month)

    def shift(self, months: int) -> YearMonth:
        """按日历月偏移,可为负数."""
        index = self.year * MONTHS_PER_YEAR + (self.month - 1) + months
        year, month_index = divmod(index, MONTHS_PER_YEAR)
        return YearMonth(year, month_index + 1)

    def first_instant(self) -> datetime:
        """该月第一天 00:00:00 UTC."""
        return datetime(self.year, self.month, 1, tzinfo=UTC)

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


def partition_name(table: ManagedTable, year_month: YearMonth) -> str:
    """生成分区名称,例如 ``events_2025_03``."""
    return f"{table.value}_{year_month.year:04d}_{year_month.month:02d}"


def derive_bounds(table: ManagedTable, year_month: YearMonth) -> PartitionBounds:
    """推导分区名称与半开区间 [start, end).

    Args:
        table: 受管父表.
        year_month: 分区所属年月.

    Returns:
        PartitionBounds: start 为当月第一刻,end 为下一日历月第一刻,均为 UTC.

    Example:
        >>> derive_bounds(ManagedTable.EVENTS, YearMonth(2025, 12)).name
        'events_2025_12'

    """
    return PartitionBounds(
        parent_table=table,
        name=partition_name(table, year_month),
        start=year_month.first_instant(),
        end=year_month.shift(1).first_instant(),
    )


def subtract_months(moment: datetime, months: int) -> datetime:
    """按日历月回退,日期超出目标月天数时截断到月末.

    例如 2025-03-31 回退 1 个月得到 2025-02-28.
    """
    target = YearMonth.from_datetime(moment).shift(-months)
    last_day = calendar.monthrange(target.year, target.month)[1]
    if moment.tzinfo is not None:
        moment = moment.astimezone(UTC)
    return moment.replace(year=target.year, month=target.month, day=min(moment.day, last_day))


def parse_partition_name(table: ManagedTable, name: str) -> YearMonth | None:
    """从分区名称反解年月,不符合 ``{table}_{YYYY}_{MM}`` 时返回 None."""
    prefix = f"{table.value}_"
    if not name.startswith(prefix):
        return None
    matched = PARTITION_SUFFIX_PATTERN.match(name[len(prefix) :])
    if matched is None:
        return None
    try:
        return YearMonth(int(matched.group("year")), int(matched.group("month")))
    except ValueError:
        return None
