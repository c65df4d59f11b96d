import logging

import pytest
from sqlalchemy import inspect as sa_inspect

from autolayer.exceptions import (
    EmptyQueryError,
    EmptySetError,
    InvalidArgumentError,
    NullPrimaryKeyError,
)
from autolayer.repositories import AsyncRepository

from ..test_fixtures.models import Reading, Station, WeatherForecast
from ..test_fixtures.repository_fixtures import SEEDED_COUNT, make_forecast


@pytest.mark.asyncio
class TestConstruction:

    async def test_none_model_is_rejected(self, db_session):
        with pytest.raises(InvalidArgumentError):
            AsyncRepository(None, db_session)

    async def test_none_session_is_rejected(self):
        with pytest.raises(InvalidArgumentError):
            AsyncRepository(WeatherForecast, None)

    async def test_get_query_is_composable(self, forecast_repo, seeded_forecasts, db_session):
        stmt = forecast_repo.get_query().where(WeatherForecast.temperature_c > 20).limit(2)
        rows = (await db_session.execute(stmt)).scalars().all()
        assert len(rows) == 2
        assert all(row.temperature_c > 20 for row in rows)


@pytest.mark.asyncio
class TestGetById:

    @pytest.mark.parametrize("bad_id", [0, -1, True, "1", 1.5, None])
    async def test_invalid_ids_are_rejected_before_storage(self, forecast_repo, bad_id):
        with pytest.raises(InvalidArgumentError) as exc_info:
            await forecast_repo.get_by_id(bad_id)
        assert exc_info.value.fields == ["id"]

    async def test_missing_id_returns_none(self, forecast_repo, seeded_forecasts):
        assert await forecast_repo.get_by_id(999) is None

    async def test_added_record_reads_back_with_equal_fields(self, forecast_repo, db_session):
        """
        Behavior:
            - add() a record, clear the identity map, read it back by id.

        Importance:
            - Proves the record went through storage rather than the session cache.
        """
        # Arrange
        forecast = make_forecast(temperature_c=18, summary="Mild")
        await forecast_repo.add(forecast)
        assert forecast.id is not None
        db_session.expunge_all()

        # Act
        stored = await forecast_repo.get_by_id(forecast.id)

        # Assert
        assert stored is not None
        assert stored is not forecast
        for field in ("id", "date", "temperature_c", "temperature_f", "summary", "station_id"):
            assert getattr(stored, field) == getattr(forecast, field)

    async def test_composite_key_model_points_to_get_by_key(self, reading_repo):
        with pytest.raises(InvalidArgumentError) as exc_info:
            await reading_repo.get_by_id(1)
        assert "get_by_key" in exc_info.value.message

    async def test_invalid_id_is_logged_at_info(self, forecast_repo, caplog):
        caplog.set_level(logging.INFO, logger="autolayer")
        with pytest.raises(InvalidArgumentError):
            await forecast_repo.get_by_id(-5)
        assert any(r.getMessage() == "repo.validation.invalid_id" and r.levelno == logging.INFO
                   for r in caplog.records)


@pytest.mark.asyncio
class TestGetByKey:

    async def test_composite_key_lookup(self, reading_repo):
        await reading_repo.add_range([
            Reading(station_code="OSL", sequence=1, value=1.5),
            Reading(station_code="OSL", sequence=2, value=2.5),
        ])

        reading = await reading_repo.get_by_key("OSL", 2)

        assert reading is not None
        assert reading.value == 2.5

    async def test_unknown_key_returns_none(self, reading_repo):
        assert await reading_repo.get_by_key("BGO", 1) is None

    async def test_wrong_arity_is_rejected(self, reading_repo):
        with pytest.raises(NullPrimaryKeyError):
            await reading_repo.get_by_key("OSL")

    async def test_none_key_value_is_rejected(self, reading_repo):
        with pytest.raises(NullPrimaryKeyError) as exc_info:
            await reading_repo.get_by_key("OSL", None)
        assert exc_info.value.fields == ["sequence"]


@pytest.mark.asyncio
class TestCollectionReads:

    async def test_get_all_returns_every_record(self, forecast_repo, seeded_forecasts):
        rows = await forecast_repo.get_all()
        assert len(rows) == SEEDED_COUNT

    async def test_untracked_reads_are_detached(self, forecast_repo, seeded_forecasts, db_session):
        rows = await forecast_repo.get_all()
        assert all(sa_inspect(row).detached for row in rows)

        # edits on detached records are never written by a later save
        rows[0].summary = "Edited offline"
        await forecast_repo.add(make_forecast())
        db_session.expunge_all()
        assert (await forecast_repo.get_by_id(rows[0].id)).summary != "Edited offline"

    async def test_tracked_reads_stay_attached(self, forecast_repo, seeded_forecasts, db_session):
        rows = await forecast_repo.get_all(as_no_tracking=False)
        assert all(row in db_session for row in rows)

    async def test_untracked_read_keeps_records_the_caller_already_tracks(self, forecast_repo, seeded_forecasts,
                                                                          db_session):
        """
        Behavior:
            - A record loaded with as_no_tracking=False, then a default (untracked) read over the same rows.

        Importance:
            - The untracked read must not detach the caller's tracked record; edits made to it
              inside a later transaction are still written.
        """
        # Arrange
        tracked = await forecast_repo.get_first(WeatherForecast.id == 1, as_no_tracking=False)

        # Act
        rows = await forecast_repo.get_all()

        # Assert
        assert tracked in db_session
        assert all(sa_inspect(row).detached for row in rows if row is not tracked)

        async def action():
            tracked.summary = "Edited in scope"

        await forecast_repo.execute_transaction(action)
        db_session.expunge_all()
        assert (await forecast_repo.get_by_id(1)).summary == "Edited in scope"

    async def test_get_where_with_sql_predicate(self, forecast_repo, seeded_forecasts):
        rows = await forecast_repo.get_where(WeatherForecast.temperature_c > 20)
        assert sorted(r.temperature_c for r in rows) == [21, 22, 23, 24, 25]

    async def test_get_where_with_callable_predicate(self, forecast_repo, seeded_forecasts):
        rows = await forecast_repo.get_where(lambda f: f.temperature_c % 10 == 0)
        assert sorted(r.temperature_c for r in rows) == [10, 20]

    async def test_get_where_without_matches_is_empty(self, forecast_repo, seeded_forecasts):
        assert await forecast_repo.get_where(WeatherForecast.temperature_c > 100) == []

    @pytest.mark.parametrize("predicate", [None, "temperature_c > 20", 42])
    async def test_get_where_rejects_non_predicates(self, forecast_repo, predicate):
        with pytest.raises(InvalidArgumentError):
            await forecast_repo.get_where(predicate)

    @pytest.mark.parametrize("operation", ["get_where", "get_first", "exists", "count_where"])
    async def test_coroutine_function_predicates_are_rejected(self, forecast_repo, seeded_forecasts, operation):
        async def is_warm(record):
            return record.temperature_c > 20

        with pytest.raises(InvalidArgumentError) as exc_info:
            await getattr(forecast_repo, operation)(is_warm)
        assert exc_info.value.fields == ["predicate"]

    @pytest.mark.parametrize("operation", ["get_where", "exists", "count_where"])
    async def test_predicates_returning_an_awaitable_are_rejected(self, forecast_repo, seeded_forecasts, operation):
        async def is_warm(record):
            return record.temperature_c > 20

        with pytest.raises(InvalidArgumentError):
            await getattr(forecast_repo, operation)(lambda record: is_warm(record))

    async def test_get_first(self, forecast_repo, seeded_forecasts):
        first = await forecast_repo.get_first(WeatherForecast.temperature_c >= 24)
        assert first is not None
        assert first.temperature_c in (24, 25)

    async def test_get_first_without_match_returns_none(self, forecast_repo, seeded_forecasts):
        assert await forecast_repo.get_first(lambda f: f.summary == "No such summary") is None


@pytest.mark.asyncio
class TestOrderingAndPaging:

    async def test_get_ordered_by_attribute_descending(self, forecast_repo, seeded_forecasts):
        rows = await forecast_repo.get_ordered(WeatherForecast.temperature_c, is_ascending=False)
        assert [r.temperature_c for r in rows] == list(range(SEEDED_COUNT, 0, -1))

    async def test_get_ordered_by_attribute_name(self, forecast_repo, seeded_forecasts):
        rows = await forecast_repo.get_ordered("temperature_c")
        assert [r.temperature_c for r in rows] == list(range(1, SEEDED_COUNT + 1))

    async def test_get_ordered_rejects_unknown_attribute_name(self, forecast_repo):
        with pytest.raises(InvalidArgumentError) as exc_info:
            await forecast_repo.get_ordered("humidity")
        assert exc_info.value.fields == ["humidity"]

    async def test_get_ordered_rejects_none(self, forecast_repo):
        with pytest.raises(InvalidArgumentError):
            await forecast_repo.get_ordered(None)

    async def test_second_page_holds_records_11_to_20(self, forecast_repo, seeded_forecasts):
        rows = await forecast_repo.get_paged(2, 10)
        assert [r.id for r in rows] == list(range(11, 21))

    async def test_last_page_is_partial(self, forecast_repo, seeded_forecasts):
        rows = await forecast_repo.get_paged(3, 10)
        assert [r.id for r in rows] == list(range(21, 26))

    async def test_page_past_the_end_is_empty(self, forecast_repo, seeded_forecasts):
        assert await forecast_repo.get_paged(4, 10) == []

    async def test_paging_follows_order_by_and_direction(self, forecast_repo, seeded_forecasts):
        rows = await forecast_repo.get_paged(1, 5, order_by=WeatherForecast.temperature_c, is_ascending=False)
        assert [r.temperature_c for r in rows] == [25, 24, 23, 22, 21]

    async def test_default_ordering_respects_direction(self, forecast_repo, seeded_forecasts):
        rows = await forecast_repo.get_paged(1, 3, is_ascending=False)
        assert [r.id for r in rows] == [25, 24, 23]

    @pytest.mark.parametrize("page_number,page_size", [(0, 10), (1, 0), (-1, 10), (1, -5)])
    async def test_invalid_page_values_are_rejected(self, forecast_repo, page_number, page_size):
        with pytest.raises(InvalidArgumentError):
            await forecast_repo.get_paged(page_number, page_size)


@pytest.mark.asyncio
class TestRelated:

    async def test_get_with_related_loads_the_relationship(self, station_repo, stations_with_forecasts):
        stations = await station_repo.get_with_related(Station.code == "ST-BUSY", Station.forecasts)

        assert len(stations) == 1
        # detached but loaded eagerly, so no lazy load is attempted
        assert sa_inspect(stations[0]).detached
        assert len(stations[0].forecasts) == 3

    async def test_get_first_with_related_by_name(self, station_repo, stations_with_forecasts):
        station = await station_repo.get_first_with_related(Station.code == "ST-IDLE", "forecasts")
        assert station is not None
        assert station.forecasts == []

    async def test_unknown_relationship_is_rejected(self, station_repo):
        with pytest.raises(InvalidArgumentError):
            await station_repo.get_with_related(Station.code == "ST-BUSY", "readings")

    async def test_column_is_not_a_relationship(self, station_repo):
        with pytest.raises(InvalidArgumentError):
            await station_repo.get_with_related(Station.code == "ST-BUSY", Station.name)


@pytest.mark.asyncio
class TestExistenceAndCounting:

    async def test_is_empty_on_empty_table(self, forecast_repo):
        assert await forecast_repo.is_empty() is True

    async def test_is_empty_after_add(self, forecast_repo):
        await forecast_repo.add(make_forecast())
        assert await forecast_repo.is_empty() is False

    async def test_exists_with_sql_predicate(self, forecast_repo, seeded_forecasts):
        assert await forecast_repo.exists(WeatherForecast.temperature_c == 7) is True
        assert await forecast_repo.exists(WeatherForecast.temperature_c == 70) is False

    async def test_exists_with_callable_predicate(self, forecast_repo, seeded_forecasts):
        assert await forecast_repo.exists(lambda f: f.temperature_c == 7) is True
        assert await forecast_repo.exists(lambda f: f.temperature_c == 70) is False

    async def test_count(self, forecast_repo, seeded_forecasts):
        assert await forecast_repo.count() == SEEDED_COUNT

    async def test_count_where_sql_and_callable_agree(self, forecast_repo, seeded_forecasts):
        assert await forecast_repo.count_where(WeatherForecast.temperature_c <= 5) == 5
        assert await forecast_repo.count_where(lambda f: f.temperature_c <= 5) == 5


@pytest.mark.asyncio
class TestAggregates:

    async def test_max_min_sum_average(self, forecast_repo, seeded_forecasts):
        assert await forecast_repo.max(WeatherForecast.temperature_c) == 25
        assert await forecast_repo.min("temperature_c") == 1
        assert await forecast_repo.sum(WeatherForecast.temperature_c) == 325
        assert await forecast_repo.average(WeatherForecast.temperature_c) == pytest.approx(13.0)

    async def test_aggregates_with_predicate(self, forecast_repo, seeded_forecasts):
        warm = WeatherForecast.temperature_c > 20
        assert await forecast_repo.max_where(warm, WeatherForecast.temperature_c) == 25
        assert await forecast_repo.min_where(warm, WeatherForecast.temperature_c) == 21
        assert await forecast_repo.sum_where(warm, WeatherForecast.temperature_c) == 115
        assert await forecast_repo.average_where(warm, WeatherForecast.temperature_c) == pytest.approx(23.0)

    async def test_aggregate_over_column_expression(self, forecast_repo, seeded_forecasts):
        assert await forecast_repo.max(WeatherForecast.temperature_c * 2) == 50

    @pytest.mark.parametrize("aggregate", ["max", "min", "sum", "average"])
    async def test_empty_table_raises_empty_set(self, forecast_repo, aggregate):
        with pytest.raises(EmptySetError) as exc_info:
            await getattr(forecast_repo, aggregate)(WeatherForecast.temperature_c)
        assert exc_info.value.aggregate == aggregate

    async def test_predicate_matching_nothing_raises_empty_set(self, forecast_repo, seeded_forecasts):
        with pytest.raises(EmptySetError):
            await forecast_repo.max_where(WeatherForecast.temperature_c > 100, WeatherForecast.temperature_c)

    async def test_aggregate_rejects_callable_predicate(self, forecast_repo, seeded_forecasts):
        with pytest.raises(InvalidArgumentError):
            await forecast_repo.sum_where(lambda f: f.temperature_c > 20, WeatherForecast.temperature_c)

    async def test_aggregate_rejects_unknown_selector(self, forecast_repo, seeded_forecasts):
        with pytest.raises(InvalidArgumentError):
            await forecast_repo.max("humidity")

    async def test_aggregate_rejects_callable_selector(self, forecast_repo, seeded_forecasts):
        with pytest.raises(InvalidArgumentError):
            await forecast_repo.max(lambda f: f.temperature_c)


@pytest.mark.asyncio
class TestRawSql:

    async def test_execute_sql_raw_materialises_records(self, forecast_repo, seeded_forecasts):
        rows = await forecast_repo.execute_sql_raw(
            "SELECT * FROM weather_forecasts WHERE temperature_c > :threshold ORDER BY id",
            {"threshold": 22},
        )
        assert [r.temperature_c for r in rows] == [23, 24, 25]
        assert all(isinstance(r, WeatherForecast) for r in rows)

    async def test_execute_sql_raw_command_returns_rowcount(self, forecast_repo, seeded_forecasts, db_session):
        affected = await forecast_repo.execute_sql_raw_command(
            "UPDATE weather_forecasts SET summary = 'Reset' WHERE temperature_c <= :limit",
            {"limit": 4},
        )
        assert affected == 4
        assert await forecast_repo.count_where(WeatherForecast.summary == "Reset") == 4

    @pytest.mark.parametrize("sql", [None, "", "   \n\t"])
    async def test_blank_sql_is_rejected(self, forecast_repo, sql):
        with pytest.raises(EmptyQueryError):
            await forecast_repo.execute_sql_raw(sql)
        with pytest.raises(EmptyQueryError):
            await forecast_repo.execute_sql_raw_command(sql)
