"""Build generation lifecycle."""

from datetime import timedelta

import pytest
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from build_store import BuildStats
from errors import NotFoundError
from models import Build, BuildStatus, Connection, Page, utc_now
from page_store import NewPage


def activate(build_store, build_id: str) -> None:
    build_store.complete_build(build_id, BuildStats(pages_count=0, connections_count=0))


def test_start_new_build(build_store):
    handle = build_store.start_new_build()

    record = build_store.get_build(handle.id)
    assert record.status == BuildStatus.building
    assert record.build_timestamp == handle.timestamp
    assert record.completed_at is None
    assert record.error_message is None


def test_build_timestamps_strictly_increase(build_store):
    handles = [build_store.start_new_build() for _ in range(5)]

    timestamps = [handle.timestamp for handle in handles]
    assert timestamps == sorted(timestamps)
    assert len(set(timestamps)) == len(timestamps)


def test_timestamp_bumped_past_future_latest(build_store, engine):
    first = build_store.start_new_build()
    future = utc_now() + timedelta(hours=1)
    with Session(engine) as session:
        session.execute(update(Build).where(Build.id == first.id).values(build_timestamp=future))
        session.commit()

    second = build_store.start_new_build()

    assert second.timestamp > future


def test_complete_build_activates_and_records_stats(build_store):
    handle = build_store.start_new_build()

    build_store.complete_build(handle.id, BuildStats(pages_count=12, connections_count=34))

    record = build_store.get_build(handle.id)
    assert record.status == BuildStatus.active
    assert record.completed_at is not None
    assert (record.pages_processed, record.connections_created) == (12, 34)


def test_complete_build_archives_previous_active(build_store):
    g1 = build_store.start_new_build()
    activate(build_store, g1.id)
    g2 = build_store.start_new_build()

    activate(build_store, g2.id)

    assert build_store.get_build(g2.id).status == BuildStatus.active
    assert build_store.get_build(g1.id).status == BuildStatus.archived
    assert build_store.get_active_build_timestamp() == g2.timestamp
    assert [b.id for b in build_store.list_builds() if b.status == BuildStatus.active] == [g2.id]


def test_complete_unknown_build(build_store):
    with pytest.raises(NotFoundError):
        activate(build_store, "missing")


def test_fail_build_records_error_without_activating(build_store):
    g1 = build_store.start_new_build()
    activate(build_store, g1.id)
    g2 = build_store.start_new_build()

    build_store.fail_build(g2.id, "RuntimeError: boom")

    failed = build_store.get_build(g2.id)
    assert failed.status == BuildStatus.building
    assert failed.error_message == "RuntimeError: boom"
    assert failed.completed_at is not None
    assert failed.failed
    assert build_store.get_active_build_timestamp() == g1.timestamp


def test_no_active_build(build_store):
    build_store.start_new_build()

    assert build_store.find_active_build() is None
    with pytest.raises(NotFoundError):
        build_store.get_active_build_timestamp()


def test_list_builds_newest_first(build_store):
    ids = [build_store.start_new_build().id for _ in range(3)]

    assert [b.id for b in build_store.list_builds()] == list(reversed(ids))
    assert len(build_store.list_builds(limit=2)) == 2


def test_cleanup_keeps_most_recent_archived(build_store, page_store, engine):
    archived = []
    for index in range(5):
        handle = build_store.start_new_build()
        origin = page_store.upsert_page(
            NewPage(wiki_id=1, title="A", url=f"https://w/{index}/A", html="", build_id=handle.id)
        )
        target = page_store.upsert_page(
            NewPage(wiki_id=2, title="B", url=f"https://w/{index}/B", html="", build_id=handle.id)
        )
        page_store.create_connection(origin.id, target.id, handle.id)
        activate(build_store, handle.id)
        archived.append(handle.id)
    current = build_store.start_new_build()
    activate(build_store, current.id)

    deleted = build_store.cleanup_old_builds(2)

    assert sorted(deleted) == sorted(archived[:3])
    remaining = {b.id: b.status for b in build_store.list_builds()}
    assert remaining == {
        archived[3]: BuildStatus.archived,
        archived[4]: BuildStatus.archived,
        current.id: BuildStatus.active,
    }
    with Session(engine) as session:
        left_connections = set(session.scalars(select(Connection.build_id)))
        left_pages = set(session.scalars(select(Page.build_id)))
    assert left_connections == {archived[3], archived[4]}
    assert left_pages == {archived[3], archived[4]}


def test_cleanup_ignores_building_and_active(build_store):
    active = build_store.start_new_build()
    activate(build_store, active.id)
    in_progress = build_store.start_new_build()

    assert build_store.cleanup_old_builds(0) == []
    assert {b.id for b in build_store.list_builds()} == {active.id, in_progress.id}


def test_cleanup_rejects_negative_keep_last(build_store):
    with pytest.raises(ValueError):
        build_store.cleanup_old_builds(-1)


def test_cleanup_prunes_failed_builds_older_than_active(build_store, page_store, engine):
    failed = build_store.start_new_build()
    page_store.upsert_page(NewPage(wiki_id=1, title="A", url="https://w/f/A", html="", build_id=failed.id))
    build_store.fail_build(failed.id, "RuntimeError: boom")
    active = build_store.start_new_build()
    activate(build_store, active.id)
    failed_after_active = build_store.start_new_build()
    build_store.fail_build(failed_after_active.id, "RuntimeError: again")

    assert build_store.cleanup_old_builds(3) == [failed.id]

    assert {b.id for b in build_store.list_builds()} == {active.id, failed_after_active.id}
    with Session(engine) as session:
        assert list(session.scalars(select(Page.build_id))) == []


def test_cleanup_keeps_failed_builds_without_active(build_store):
    failed = build_store.start_new_build()
    build_store.fail_build(failed.id, "RuntimeError: boom")

    assert build_store.cleanup_old_builds(0) == []
    assert build_store.get_build(failed.id).failed
