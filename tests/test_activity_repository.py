from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from telemetry.domain.entities import ActivityType, DeviceInfo
from telemetry.domain.result import ActivityStoreError, StoreErrorKind
from telemetry.infrastructure.repositories import ActivityRecordRepository

BASE_TIME = datetime(2023, 1, 15, 10, 0, tzinfo=timezone.utc)


class _UnavailableSession:
    def __enter__(self):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    def __exit__(self, *exc_info):
        return False


def test_create_and_get_round_trip(repository, record_factory):
    created = repository.create(
        record_factory(
            device_info=DeviceInfo(browser="Chrome", os="Windows"),
            metadata={"source": "test"},
        )
    ).unwrap()

    stored = repository.get(created.id).unwrap()

    assert created.id is not None
    assert stored.activity_type is ActivityType.LOGIN
    assert stored.created_at == BASE_TIME
    assert stored.created_at.tzinfo is not None
    assert stored.device_info == DeviceInfo(browser="Chrome", os="Windows")
    assert stored.metadata == {"source": "test"}


def test_find_many_filters_sorts_and_pages(repository, record_factory):
    for offset in range(5):
        repository.create(
            record_factory(
                created_at=BASE_TIME + timedelta(minutes=offset),
                success=offset % 2 == 0,
            )
        )

    newest_first = repository.find_many(page_size=2).unwrap()
    second_page = repository.find_many(page=2, page_size=2).unwrap()
    failed = repository.find_many({"success": False}).unwrap()
    recent = repository.find_many(
        {"created_at": {"$gte": BASE_TIME + timedelta(minutes=3)}},
        sort=(("created_at", "asc"),),
    ).unwrap()

    assert [record.created_at.minute for record in newest_first] == [4, 3]
    assert [record.created_at.minute for record in second_page] == [2, 1]
    assert len(failed) == 2
    assert [record.created_at.minute for record in recent] == [3, 4]


def test_filter_operators(repository, record_factory):
    repository.create(record_factory(activity_type=ActivityType.LOGIN, ip_address=None))
    repository.create(record_factory(activity_type=ActivityType.LOGOUT))
    repository.create(record_factory(activity_type=ActivityType.PAGE_VIEW, actor_ref=None))

    in_filter = {"activity_type": {"$in": [ActivityType.LOGIN, ActivityType.LOGOUT]}}

    assert repository.count(in_filter).unwrap() == 2
    assert repository.count({"activity_type": {"$ne": "login"}}).unwrap() == 2
    assert repository.count({"ip_address": {"$notNull": True}}).unwrap() == 2
    assert repository.count({"actor_ref": None}).unwrap() == 1


def test_unknown_filter_is_reported_not_raised(repository):
    unknown_field = repository.find_many({"password": "x"})
    unknown_operator = repository.count({"created_at": {"$regex": ".*"}})

    assert unknown_field.error.kind is StoreErrorKind.INVALID_FILTER
    assert unknown_operator.error.kind is StoreErrorKind.INVALID_FILTER
    with pytest.raises(ActivityStoreError):
        unknown_field.unwrap()


def test_update_is_limited_to_anonymizable_fields(repository, record_factory):
    created = repository.create(record_factory(metadata={"source": "test"})).unwrap()

    rejected = repository.update(created.id, {"activity_type": "logout"})
    updated = repository.update(
        created.id,
        {"ip_address": "192.168.1.0", "metadata": {"anonymized": True}},
    ).unwrap()

    assert rejected.error.kind is StoreErrorKind.INVALID_UPDATE
    assert updated.ip_address == "192.168.1.0"
    assert updated.metadata == {"source": "test", "anonymized": True}
    assert updated.activity_type is ActivityType.LOGIN


def test_update_and_delete_missing_record(repository):
    assert repository.update(999, {"ip_address": None}).error.kind is StoreErrorKind.NOT_FOUND
    assert repository.delete(999).unwrap() is False


def test_delete_removes_record(repository, record_factory):
    created = repository.create(record_factory()).unwrap()

    assert repository.delete(created.id).unwrap() is True
    assert repository.get(created.id).unwrap() is None


def test_iter_pages_walks_every_record(repository, record_factory):
    for offset in range(7):
        repository.create(record_factory(created_at=BASE_TIME + timedelta(seconds=offset)))

    pages = list(repository.iter_pages(page_size=3))

    assert [len(page) for page in pages] == [3, 3, 1]


def test_find_before_walks_behind_the_cursor(repository, record_factory):
    first = repository.create(record_factory(created_at=BASE_TIME)).unwrap()
    tied = repository.create(record_factory(created_at=BASE_TIME)).unwrap()
    newest = repository.create(record_factory(created_at=BASE_TIME + timedelta(seconds=5))).unwrap()

    head = repository.find_before(page_size=2).unwrap()
    repository.create(record_factory(created_at=BASE_TIME + timedelta(seconds=10)))
    rest = repository.find_before(before=(head[-1].created_at, head[-1].id), page_size=2).unwrap()

    assert [record.id for record in head] == [newest.id, tied.id]
    assert [record.id for record in rest] == [first.id]


def test_anonymized_flag_follows_metadata(repository, record_factory):
    already = repository.create(record_factory(metadata={"anonymized": True})).unwrap()
    pending = repository.create(record_factory()).unwrap()

    repository.update(pending.id, {"metadata": {"anonymized": True}}).unwrap()

    assert repository.count({"anonymized": False}).unwrap() == 0
    assert {record.id for record in repository.find_many({"anonymized": True}).unwrap()} == {
        already.id,
        pending.id,
    }


def test_store_outage_becomes_unavailable_result(record_factory):
    repository = ActivityRecordRepository(_UnavailableSession)

    result = repository.create(record_factory())

    assert not result.ok
    assert result.error.kind is StoreErrorKind.UNAVAILABLE
    with pytest.raises(ActivityStoreError):
        list(repository.iter_pages())
