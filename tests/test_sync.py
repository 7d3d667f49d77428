# tests/test_sync.py

import datetime
from unittest.mock import AsyncMock

import pytest
import pytz

from scheduler_logic import AnnouncementScheduler, fire_times
from shared.exceptions import RemoteSyncError
from shared.storage import AnnouncementStore
from shared.sync import SYNC_JOB_ID, SyncEngine, parse_correlation_id


def remote_ad(**overrides):
    data = {
        "id": 99,
        "local_ad_id": "7",
        "group_id": "G2",
        "content": "Promo da semana",
        "interval": 2,
        "unit": "hours",
        "active": True,
        "created_at": "2024-01-01T09:00:00-03:00",
        "last_sent_at": "2024-01-01T10:00:00-03:00",
    }
    data.update(overrides)
    return data


@pytest.fixture
def scheduler(store):
    return AnnouncementScheduler(store, deliver=AsyncMock(return_value=True), timezone="UTC")


def make_engine(store, remote, scheduler, adopt_new=True):
    return SyncEngine(store, remote, scheduler, adopt_new=adopt_new, interval_seconds=60)


async def test_adopts_unknown_remote_record(store, remote, scheduler, data_file):
    remote.list_all.return_value = [remote_ad()]
    engine = make_engine(store, remote, scheduler)

    result = await engine.run_cycle()

    assert result.adopted == 1
    record = store.get("G2_7")
    assert record.sent_count == 0
    assert record.content == "Promo da semana"
    assert record.remote_id == "99"
    assert record.created_at == "2024-01-01T09:00:00-03:00"
    assert record.last_sent == "2024-01-01T10:00:00-03:00"
    assert scheduler.has_job("G2_7")
    assert store.last_sync_time == result.finished_at

    reloaded = AnnouncementStore(data_file)
    reloaded.load()
    assert reloaded.get("G2_7") == record


async def test_adopted_inactive_record_is_not_scheduled(store, remote, scheduler):
    remote.list_all.return_value = [remote_ad(active=False)]
    engine = make_engine(store, remote, scheduler)

    await engine.run_cycle()

    assert "G2_7" in store
    assert not scheduler.has_job("G2_7")


async def test_unknown_record_ignored_when_adoption_disabled(store, remote, scheduler):
    remote.list_all.return_value = [remote_ad()]
    engine = make_engine(store, remote, scheduler, adopt_new=False)

    result = await engine.run_cycle()

    assert result.ignored == 1
    assert "G2_7" not in store
    assert scheduler.job_count == 0
    assert store.last_sync_time is not None


async def test_backfills_remote_id_without_overwriting_local_fields(store, remote, scheduler):
    store.add("G1", "Local text", 30, "minutes")
    store.record_delivery("G1_1")
    remote.list_all.return_value = [
        remote_ad(id=5, local_ad_id="1", group_id="G1", content="Remote text", interval=1, unit="days")
    ]
    engine = make_engine(store, remote, scheduler)

    result = await engine.run_cycle()

    assert result.backfilled == 1
    record = store.get("G1_1")
    assert record.remote_id == "5"
    assert record.content == "Local text"
    assert (record.interval, record.unit) == (30, "minutes")
    assert record.sent_count == 1


async def test_existing_remote_id_is_kept(store, remote, scheduler):
    store.add("G1", "Local text", 30, "minutes")
    store.set_remote_id("G1_1", "5")
    remote.list_all.return_value = [remote_ad(id=6, local_ad_id="1", group_id="G1")]

    result = await make_engine(store, remote, scheduler).run_cycle()

    assert result.backfilled == 0
    assert store.get("G1_1").remote_id == "5"


@pytest.mark.parametrize("correlation_id", ["01", " 1", 1, "1 "])
async def test_padded_correlation_id_matches_existing_record(store, remote, scheduler, correlation_id):
    store.add("G1", "Local text", 30, "minutes")
    store.record_delivery("G1_1")
    scheduler.schedule("G1_1", store.get("G1_1"))
    remote.list_all.return_value = [
        remote_ad(id=5, local_ad_id=correlation_id, group_id="G1",
                  content="Remote text", interval=1, unit="days")
    ]

    result = await make_engine(store, remote, scheduler).run_cycle()

    assert result.adopted == 0
    assert result.backfilled == 1
    record = store.get("G1_1")
    assert record.content == "Local text"
    assert (record.interval, record.unit) == (30, "minutes")
    assert record.sent_count == 1
    assert record.remote_id == "5"
    start = datetime.datetime(2024, 1, 1, 10, 1, tzinfo=pytz.utc)
    assert fire_times(scheduler._jobs["G1_1"].trigger, start, 2) == [
        datetime.datetime(2024, 1, 1, 10, 30, tzinfo=pytz.utc),
        datetime.datetime(2024, 1, 1, 11, 0, tzinfo=pytz.utc),
    ]


@pytest.mark.parametrize("correlation_id", ["abc", "0", "-3", "7.0", 7.5, True])
async def test_unusable_correlation_id_is_ignored(store, remote, scheduler, correlation_id):
    remote.list_all.return_value = [remote_ad(local_ad_id=correlation_id)]

    result = await make_engine(store, remote, scheduler).run_cycle()

    assert result.ignored == 1
    assert len(store) == 0


def test_parse_correlation_id():
    assert parse_correlation_id("7") == 7
    assert parse_correlation_id(" 07 ") == 7
    assert parse_correlation_id(7) == 7
    assert parse_correlation_id(None) is None
    assert parse_correlation_id("") is None
    assert parse_correlation_id("0") is None


async def test_records_without_correlation_id_are_ignored(store, remote, scheduler):
    remote.list_all.return_value = [remote_ad(local_ad_id=None), remote_ad(local_ad_id="")]

    result = await make_engine(store, remote, scheduler).run_cycle()

    assert result.ignored == 2
    assert len(store) == 0


async def test_malformed_remote_record_is_skipped(store, remote, scheduler):
    remote.list_all.return_value = [
        remote_ad(local_ad_id="8", interval=2, unit="minutes"),
        remote_ad(local_ad_id="9", unit="weeks"),
        remote_ad(local_ad_id="10"),
    ]

    result = await make_engine(store, remote, scheduler).run_cycle()

    assert result.adopted == 1
    assert result.ignored == 2
    assert list(k for k, _ in store.active_items()) == ["G2_10"]


async def test_failed_pull_skips_cycle(store, remote, scheduler):
    store.add("G1", "Local text", 30, "minutes")
    remote.list_all.side_effect = RemoteSyncError("timeout")

    assert await make_engine(store, remote, scheduler).run_cycle() is None
    assert store.last_sync_time is None
    assert store.get("G1_1").remote_id is None


async def test_remote_deletions_are_not_pruned(store, remote, scheduler):
    store.add("G1", "Local text", 30, "minutes")
    remote.list_all.return_value = []

    await make_engine(store, remote, scheduler).run_cycle()

    assert "G1_1" in store


async def test_disabled_remote_skips_cycle(store, remote, scheduler):
    remote.is_enabled.return_value = False

    assert await make_engine(store, remote, scheduler).run_cycle() is None
    remote.list_all.assert_not_awaited()


def test_start_registers_interval_job_only_when_enabled(store, remote, scheduler):
    engine = make_engine(store, remote, scheduler)
    engine.start()
    assert scheduler.scheduler.get_job(SYNC_JOB_ID) is not None
    engine.stop()
    assert scheduler.scheduler.get_job(SYNC_JOB_ID) is None

    remote.is_enabled.return_value = False
    engine.start()
    assert scheduler.scheduler.get_job(SYNC_JOB_ID) is None
