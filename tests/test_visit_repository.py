import asyncio
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId
from bson.errors import InvalidBSON
from pymongo import DESCENDING
from pymongo.errors import OperationFailure, PyMongoError

from analytics.view import AggregationView, ViewConfig, ViewState
from db.visit_log import SliceQuery
from db.visit_repository import MongoVisitLog, VisitStreamClosed
from models.analytics import TimeWindow
from models.visit import DeviceType, VisitRecord
from tests.conftest import BASE_TIME, settle


class FakeChangeStream:
    """Async context manager / iterator standing in for a Motor change stream."""

    def __init__(self, changes=(), error=None, hang=False):
        self._changes = list(changes)
        self._error = error
        self._hang = hang

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def __aiter__(self):
        return self

    async def __anext__(self):
        await asyncio.sleep(0)
        if self._changes:
            return self._changes.pop(0)
        if self._error is not None:
            raise self._error
        if self._hang:
            await asyncio.Event().wait()
        raise StopAsyncIteration


@pytest.fixture
def db():
    database = MagicMock()
    database.visits = MagicMock()
    return database


class TestAppend:
    @pytest.mark.asyncio
    async def test_append_lets_server_set_timestamp(self, db):
        db.visits.update_one = AsyncMock()
        log = MongoVisitLog(db)
        record = VisitRecord(path="/about", timestamp=datetime(2001, 1, 1), device=DeviceType.MOBILE)

        assert await log.append(record) is True

        (criteria, update), kwargs = db.visits.update_one.call_args
        assert isinstance(criteria["_id"], ObjectId)
        assert update == {
            "$setOnInsert": {"path": "/about", "device": "Mobile"},
            "$currentDate": {"timestamp": True},
        }
        assert kwargs == {"upsert": True}

    @pytest.mark.asyncio
    async def test_append_failure_returns_false(self, db, caplog):
        db.visits.update_one = AsyncMock(side_effect=PyMongoError("write concern"))
        log = MongoVisitLog(db)

        assert await log.append(VisitRecord(path="/")) is False
        assert "Failed to append visit" in caplog.text


class TestFetchSlice:
    @pytest.mark.asyncio
    async def test_query_shape(self, db):
        cursor = MagicMock()
        cursor.sort.return_value = cursor
        cursor.limit.return_value = cursor
        cursor.to_list = AsyncMock(return_value=[
            {"_id": ObjectId(), "path": "/news", "timestamp": BASE_TIME, "country": "Ethiopia"},
        ])
        db.visits.find.return_value = cursor
        log = MongoVisitLog(db)

        visits = await log.fetch_slice(SliceQuery(since=BASE_TIME, limit=50))

        db.visits.find.assert_called_once_with({"timestamp": {"$gte": BASE_TIME}})
        cursor.sort.assert_called_once_with("timestamp", DESCENDING)
        cursor.limit.assert_called_once_with(50)
        assert [v.path for v in visits] == ["/news"]
        assert visits[0].country == "Ethiopia"

    @pytest.mark.asyncio
    async def test_all_time_has_no_filter(self, db):
        cursor = MagicMock()
        cursor.sort.return_value = cursor
        cursor.limit.return_value = cursor
        cursor.to_list = AsyncMock(return_value=[])
        db.visits.find.return_value = cursor

        await MongoVisitLog(db).fetch_slice(SliceQuery(since=None, limit=10))

        db.visits.find.assert_called_once_with({})


class TestSubscribe:
    @pytest.mark.asyncio
    async def test_initial_slice_and_requery_on_matching_insert(self, db):
        since = BASE_TIME - timedelta(hours=1)
        db.visits.watch.return_value = FakeChangeStream(
            changes=[
                {"operationType": "insert", "fullDocument": {"timestamp": BASE_TIME}},
                {"operationType": "insert", "fullDocument": {"timestamp": since - timedelta(days=1)}},
            ],
            hang=True,
        )
        log = MongoVisitLog(db)
        log.fetch_slice = AsyncMock(return_value=[VisitRecord(path="/")])
        slices, errors = [], []

        subscription = log.subscribe(SliceQuery(since=since, limit=10), slices.append, errors.append)
        await settle(10)

        # initial + the in-window insert; the backdated insert is skipped
        assert len(slices) == 2
        assert errors == []
        pipeline = db.visits.watch.call_args.args[0]
        assert pipeline == [{"$match": {"operationType": "insert"}}]

        subscription.cancel()
        await settle()
        assert errors == []

    @pytest.mark.asyncio
    async def test_stream_error_reports_failure(self, db):
        error = OperationFailure("The $changeStream stage is only supported on replica sets")
        db.visits.watch.return_value = FakeChangeStream(error=error)
        log = MongoVisitLog(db)
        log.fetch_slice = AsyncMock(return_value=[])
        errors = []

        log.subscribe(SliceQuery(since=None, limit=10), lambda visits: None, errors.append)
        await settle(10)

        assert errors == [error]

    @pytest.mark.asyncio
    async def test_closed_stream_reports_failure(self, db):
        db.visits.watch.return_value = FakeChangeStream()
        log = MongoVisitLog(db)
        log.fetch_slice = AsyncMock(return_value=[])
        errors = []

        log.subscribe(SliceQuery(since=None, limit=10), lambda visits: None, errors.append)
        await settle(10)

        assert len(errors) == 1
        assert isinstance(errors[0], VisitStreamClosed)

    @pytest.mark.asyncio
    async def test_decode_error_on_requery_reports_failure(self, db):
        db.visits.watch.return_value = FakeChangeStream(
            changes=[{"operationType": "insert", "fullDocument": {"timestamp": BASE_TIME}}],
            hang=True,
        )
        error = InvalidBSON("bad utf-8")
        log = MongoVisitLog(db)
        log.fetch_slice = AsyncMock(side_effect=[[VisitRecord(path="/")], error])
        slices, errors = [], []

        subscription = log.subscribe(SliceQuery(since=None, limit=10), slices.append, errors.append)
        await settle(10)

        assert len(slices) == 1
        assert errors == [error]
        assert subscription._task.done()

    @pytest.mark.asyncio
    async def test_decode_error_moves_view_to_unavailable(self, db):
        db.visits.watch.return_value = FakeChangeStream(
            changes=[{"operationType": "insert", "fullDocument": {"timestamp": BASE_TIME}}],
            hang=True,
        )
        log = MongoVisitLog(db)
        log.fetch_slice = AsyncMock(side_effect=[[VisitRecord(path="/")], InvalidBSON("bad utf-8")])
        log.now = lambda: BASE_TIME

        view = AggregationView(log, ViewConfig(window=TimeWindow.ALL_TIME, max_records=10)).start()
        await settle(10)

        assert view.state is ViewState.UNAVAILABLE
        assert view.snapshot is None
        assert view.current().error == "bad utf-8"
        view.dispose()

    @pytest.mark.asyncio
    async def test_cancel_stops_task_without_error(self, db):
        db.visits.watch.return_value = FakeChangeStream(hang=True)
        log = MongoVisitLog(db)
        log.fetch_slice = AsyncMock(return_value=[])
        slices, errors = [], []

        subscription = log.subscribe(SliceQuery(since=None, limit=10), slices.append, errors.append)
        await settle(10)
        subscription.cancel()
        await settle(10)

        assert len(slices) == 1
        assert errors == []
        assert subscription._task.done()
