"""Engine factory."""

import pytest

from build_store import BuildStats, SqlBuildStore
from conftest import BASE_URL
from models import init_db, make_engine
from page_store import NewPage, SqlPageStore


@pytest.mark.parametrize("database_url", ["sqlite://", "sqlite:///:memory:"])
def test_in_memory_sqlite_url(database_url):
    engine = make_engine(database_url=database_url)
    init_db(engine)
    page_store = SqlPageStore(engine, base_url=BASE_URL)
    build_store = SqlBuildStore(engine)

    handle = build_store.start_new_build()
    page = page_store.upsert_page(
        NewPage(wiki_id=1, title="Alpha", url=f"{BASE_URL}/wiki/Alpha", html="", build_id=handle.id)
    )
    build_store.complete_build(handle.id, BuildStats(pages_count=1, connections_count=0))

    # Separate sessions see the same database.
    assert page_store.get_page(page.id).title == "Alpha"
    assert build_store.find_active_build().id == handle.id
    engine.dispose()


def test_sqlite_file_enforces_foreign_keys(tmp_path):
    engine = make_engine(str(tmp_path / "graph.sqlite3"))
    init_db(engine)

    with engine.connect() as connection:
        assert connection.exec_driver_sql("PRAGMA foreign_keys").scalar() == 1
    engine.dispose()
