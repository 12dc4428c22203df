from datetime import UTC, datetime

import pytest

from pulse import create_app, db
from pulse.constants.partition_constants import ManagedTable, PartitionDdl
from pulse.models.partition_config import PartitionConfig
from pulse.repositories.partition_catalog_repository import PartitionCatalogRepository, render_ddl
from pulse.services.partition.partition_naming import YearMonth, derive_bounds
from pulse.settings import Settings
from pulse.types.partition import PartitionBounds


@pytest.fixture
def app_ctx():
    app = create_app(init_scheduler_on_start=False, settings=Settings.load())
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.mark.unit
def test_render_ddl_uses_templates_and_derived_names(app_ctx) -> None:
    bounds = derive_bounds(ManagedTable.EVENTS, YearMonth(2025, 3))

    assert render_ddl(PartitionDdl.CREATE, bounds) == (
        "CREATE TABLE events_2025_03 PARTITION OF events "
        "FOR VALUES FROM ('2025-03-01T00:00:00+00:00') TO ('2025-04-01T00:00:00+00:00')"
    )
    assert render_ddl(PartitionDdl.DETACH, bounds) == "ALTER TABLE events DETACH PARTITION events_2025_03"
    assert render_ddl(PartitionDdl.VACUUM_FULL, bounds) == "VACUUM FULL events_2025_03"


@pytest.mark.unit
def test_render_ddl_rejects_unsafe_identifiers(app_ctx) -> None:
    bounds = PartitionBounds(
        parent_table=ManagedTable.EVENTS,
        name="events_2025_03; DROP TABLE events",
        start=datetime(2025, 3, 1, tzinfo=UTC),
        end=datetime(2025, 4, 1, tzinfo=UTC),
    )

    with pytest.raises(ValueError, match="非法分区标识符"):
        render_ddl(PartitionDdl.DROP, bounds)


@pytest.mark.unit
def test_register_metadata_is_idempotent(app_ctx) -> None:
    bounds = derive_bounds(ManagedTable.EVENTS, YearMonth(2025, 3))

    first = PartitionCatalogRepository.register_metadata(bounds=bounds)
    second = PartitionCatalogRepository.register_metadata(bounds=bounds)

    assert first.id == second.id
    assert len(PartitionCatalogRepository.list_metadata()) == 1


@pytest.mark.unit
def test_list_metadata_orders_by_parent_then_newest(app_ctx) -> None:
    for table, year, month in [
        (ManagedTable.GOAL_COMPLETIONS, 2025, 1),
        (ManagedTable.EVENTS, 2025, 1),
        (ManagedTable.EVENTS, 2025, 2),
    ]:
        PartitionCatalogRepository.register_metadata(bounds=derive_bounds(table, YearMonth(year, month)))

    names = [entry.partition_name for entry in PartitionCatalogRepository.list_metadata()]
    assert names == ["events_2025_02", "events_2025_01", "goal_completions_2025_01"]

    filtered = PartitionCatalogRepository.list_metadata(parent_table="goal_completions")
    assert [entry.partition_name for entry in filtered] == ["goal_completions_2025_01"]


@pytest.mark.unit
def test_statistics_and_vacuum_timestamps_are_written(app_ctx) -> None:
    bounds = derive_bounds(ManagedTable.EVENTS, YearMonth(2025, 3))
    PartitionCatalogRepository.register_metadata(bounds=bounds)
    analyzed_at = datetime(2025, 3, 15, 2, 0, tzinfo=UTC)

    PartitionCatalogRepository.update_statistics(
        partition_name=bounds.name,
        row_count=120,
        size_bytes=2048,
        analyzed_at=analyzed_at,
    )
    PartitionCatalogRepository.mark_vacuumed(partition_name=bounds.name, vacuumed_at=analyzed_at)

    entry = PartitionCatalogRepository.get_metadata(partition_name=bounds.name)
    assert entry.row_count == 120
    assert entry.size_bytes == 2048
    assert entry.last_analyzed_at is not None
    assert entry.last_vacuumed_at is not None


@pytest.mark.unit
def test_delete_metadata_reports_removed_rows(app_ctx) -> None:
    bounds = derive_bounds(ManagedTable.EVENTS, YearMonth(2024, 1))
    PartitionCatalogRepository.register_metadata(bounds=bounds)

    assert PartitionCatalogRepository.delete_metadata(partition_name=bounds.name) == 1
    assert PartitionCatalogRepository.delete_metadata(partition_name=bounds.name) == 0
    assert PartitionCatalogRepository.get_metadata(partition_name=bounds.name) is None


@pytest.mark.unit
def test_touch_last_maintenance_updates_matching_config(app_ctx) -> None:
    db.session.add(PartitionConfig(table_name="events"))
    db.session.flush()
    maintained_at = datetime(2025, 3, 15, 2, 5, tzinfo=UTC)

    PartitionCatalogRepository.touch_last_maintenance(table_name="events", maintained_at=maintained_at)
    PartitionCatalogRepository.touch_last_maintenance(table_name="goal_completions", maintained_at=maintained_at)

    configs = PartitionCatalogRepository.list_configs()
    assert [config.table_name for config in configs] == ["events"]
    assert configs[0].last_maintenance_at is not None
    assert configs[0].retention_months == 12
    assert configs[0].future_partitions == 6


@pytest.mark.unit
def test_partition_table_exists_scopes_lookup_to_current_schema(app_ctx, monkeypatch) -> None:
    executed: list[tuple[str, dict]] = []

    class _Result:
        @staticmethod
        def scalar() -> bool:
            return True

    def _execute(statement, params=None):
        executed.append((str(statement), params))
        return _Result()

    monkeypatch.setattr(db.session, "execute", _execute)
    bounds = derive_bounds(ManagedTable.EVENTS, YearMonth(2025, 3))

    assert PartitionCatalogRepository.partition_table_exists(bounds=bounds) is True

    statement, params = executed[0]
    assert "table_schema = current_schema()" in statement
    assert "table_name = :partition_name" in statement
    assert params == {"partition_name": "events_2025_03"}
