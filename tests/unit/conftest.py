# tests/unit/conftest.py
"""单元测试专用 fixtures.

提供隔离环境变量、固定时钟、内存分区目录与 db.session 替身.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import UTC, datetime
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import OperationalError

from pulse import db
from pulse.constants.partition_constants import ManagedTable
from pulse.services.partition.partition_naming import YearMonth, derive_bounds

FIXED_NOW = datetime(2025, 3, 15, 12, 0, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def _unit_test_env(monkeypatch):
    """为 unit tests 强制注入隔离环境变量.

    目标:
    - unit tests 不依赖外部 PostgreSQL 与调度器
    - 避免开发者本机环境变量影响测试稳定性
    """
    monkeypatch.setenv("FLASK_ENV", "testing")
    monkeypatch.setenv("ENABLE_SCHEDULER", "false")
    monkeypatch.setenv("DATABASE_URL", "sqlite:///:memory:")
    monkeypatch.delenv("PARTITION_MONTHS_AHEAD", raising=False)
    monkeypatch.delenv("PARTITION_RETENTION_MONTHS", raising=False)


@pytest.fixture
def mock_time():
    """可调整的固定时钟,默认 2025-03-15 12:00 UTC."""
    fixed_time = FIXED_NOW

    class MockTime:
        @staticmethod
        def now():
            return fixed_time

        @staticmethod
        def set(new_time: datetime):
            nonlocal fixed_time
            fixed_time = new_time

    return MockTime


def store_error(message: str = "store unavailable") -> OperationalError:
    return OperationalError("SELECT 1", {}, Exception(message))


class FakeCatalogRepository:
    """内存版分区目录,接口与 PartitionCatalogRepository 保持一致.

    ``failures`` 以 (方法名, 分区名) 为键注入 SQLAlchemyError,分区名为 None 时对该方法全部生效.
    """

    def __init__(self) -> None:
        self.tables: set[str] = set()
        self.rows: dict[str, int] = {}
        self.sizes: dict[str, int] = {}
        self.metadata: dict[str, SimpleNamespace] = {}
        self.configs: list[SimpleNamespace] = []
        self.ddl: list[tuple[str, str]] = []
        self.failures: dict[tuple[str, str | None], Exception] = {}

    # 测试数据构造
    def seed(self, table: ManagedTable, year: int, month: int, *, rows: int = 0, size_bytes: int = 0) -> str:
        bounds = derive_bounds(table, YearMonth(year, month))
        self.tables.add(bounds.name)
        self.rows[bounds.name] = rows
        self.sizes[bounds.name] = size_bytes
        self.metadata[bounds.name] = SimpleNamespace(
            parent_table=table.value,
            partition_name=bounds.name,
            range_start=bounds.start,
            range_end=bounds.end,
            row_count=rows,
            size_bytes=size_bytes,
            last_analyzed_at=None,
            last_vacuumed_at=None,
        )
        return bounds.name

    def add_config(
        self,
        table: ManagedTable,
        *,
        retention_months: int = 12,
        future_partitions: int = 6,
        is_enabled: bool = True,
    ) -> SimpleNamespace:
        config = SimpleNamespace(
            table_name=table.value,
            retention_months=retention_months,
            future_partitions=future_partitions,
            is_enabled=is_enabled,
            last_maintenance_at=None,
        )
        self.configs.append(config)
        return config

    def fail(self, method: str, partition_name: str | None = None, error: Exception | None = None) -> None:
        self.failures[(method, partition_name)] = error or store_error()

    def _check(self, method: str, partition_name: str | None = None) -> None:
        for key in ((method, partition_name), (method, None)):
            if key in self.failures:
                raise self.failures[key]

    # 物理分区
    def partition_table_exists(self, *, bounds) -> bool:
        self._check("partition_table_exists", bounds.name)
        return bounds.name in self.tables

    def create_partition_table(self, *, bounds) -> None:
        self._check("create_partition_table", bounds.name)
        self.ddl.append(("CREATE", bounds.name))
        self.tables.add(bounds.name)
        self.rows.setdefault(bounds.name, 0)

    def detach_partition(self, *, bounds) -> None:
        self._check("detach_partition", bounds.name)
        self.ddl.append(("DETACH", bounds.name))

    def drop_partition_table(self, *, bounds) -> None:
        self._check("drop_partition_table", bounds.name)
        self.ddl.append(("DROP", bounds.name))
        self.tables.discard(bounds.name)

    def analyze_partition(self, *, bounds) -> None:
        self._check("analyze_partition", bounds.name)
        self.ddl.append(("ANALYZE", bounds.name))

    def vacuum_partition(self, *, bounds, full: bool = False) -> None:
        self._check("vacuum_partition", bounds.name)
        self.ddl.append(("VACUUM_FULL" if full else "VACUUM", bounds.name))

    def count_rows(self, *, bounds) -> int:
        self._check("count_rows", bounds.name)
        return self.rows.get(bounds.name, 0)

    def fetch_total_relation_size(self, *, bounds) -> int:
        self._check("fetch_total_relation_size", bounds.name)
        return self.sizes.get(bounds.name, 0)

    # 目录 partition_metadata
    def list_metadata(self, *, parent_table: str | None = None) -> list[SimpleNamespace]:
        self._check("list_metadata")
        entries = [
            entry
            for entry in self.metadata.values()
            if parent_table is None or entry.parent_table == parent_table
        ]
        entries.sort(key=lambda entry: entry.range_start, reverse=True)
        entries.sort(key=lambda entry: entry.parent_table)
        return entries

    def get_metadata(self, *, partition_name: str) -> SimpleNamespace | None:
        self._check("get_metadata", partition_name)
        return self.metadata.get(partition_name)

    def register_metadata(self, *, bounds) -> SimpleNamespace:
        self._check("register_metadata", bounds.name)
        if bounds.name not in self.metadata:
            self.metadata[bounds.name] = SimpleNamespace(
                parent_table=bounds.parent_table.value,
                partition_name=bounds.name,
                range_start=bounds.start,
                range_end=bounds.end,
                row_count=0,
                size_bytes=0,
                last_analyzed_at=None,
                last_vacuumed_at=None,
            )
        return self.metadata[bounds.name]

    def delete_metadata(self, *, partition_name: str) -> int:
        self._check("delete_metadata", partition_name)
        return 1 if self.metadata.pop(partition_name, None) is not None else 0

    def update_statistics(self, *, partition_name: str, row_count: int, size_bytes: int, analyzed_at) -> None:
        entry = self.metadata.get(partition_name)
        if entry is None:
            return
        entry.row_count = row_count
        entry.size_bytes = size_bytes
        entry.last_analyzed_at = analyzed_at

    def mark_vacuumed(self, *, partition_name: str, vacuumed_at) -> None:
        entry = self.metadata.get(partition_name)
        if entry is not None:
            entry.last_vacuumed_at = vacuumed_at

    # 维护配置 partition_config
    def list_configs(self) -> list[SimpleNamespace]:
        self._check("list_configs")
        return list(self.configs)

    def touch_last_maintenance(self, *, table_name: str, maintained_at) -> None:
        for config in self.configs:
            if config.table_name == table_name:
                config.last_maintenance_at = maintained_at


@pytest.fixture
def catalog() -> FakeCatalogRepository:
    """空的内存分区目录."""
    return FakeCatalogRepository()


@pytest.fixture
def fake_session(monkeypatch):
    """替换 db.session 的事务方法,记录 commit/rollback 次数."""
    calls = SimpleNamespace(commits=0, rollbacks=0, savepoints=0)

    @contextmanager
    def _begin_nested():
        calls.savepoints += 1
        yield

    def _commit() -> None:
        calls.commits += 1

    def _rollback() -> None:
        calls.rollbacks += 1

    monkeypatch.setattr(db.session, "begin_nested", _begin_nested)
    monkeypatch.setattr(db.session, "commit", _commit)
    monkeypatch.setattr(db.session, "rollback", _rollback)
    return calls
