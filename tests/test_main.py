"""Command line entry points."""

import pytest

import main
from build_service import BuildService
from conftest import FakeWikiSource, link_to, make_wiki_page
from dataset_service import DataSetService
from http_api import AppResources
from scheduler import BuildScheduler


@pytest.fixture
def resources(page_store, build_store) -> AppResources:
    source = FakeWikiSource(
        [make_wiki_page(1, "Alpha", html=link_to("Beta")), make_wiki_page(2, "Beta")]
    )
    build_service = BuildService(source, page_store, build_store)
    return AppResources(
        dataset_service=DataSetService(source),
        build_service=build_service,
        scheduler=BuildScheduler(build_service),
        page_store=page_store,
        build_store=build_store,
    )


@pytest.fixture
def use_resources(monkeypatch, resources):
    monkeypatch.setattr(main, "build_resources", lambda config: resources)
    return resources


def test_run_build_activates_a_build(use_resources, build_store, capsys):
    assert main.run_build(config=None) == 0

    active = build_store.find_active_build()
    assert active is not None
    assert active.pages_processed == 2
    assert active.connections_created == 1
    assert f"Build {active.id} completed: pages=2 connections=1" in capsys.readouterr().out


def test_run_build_without_scheduler(use_resources, build_store, capsys):
    use_resources.scheduler = None

    assert main.run_build(config=None) == 1
    assert "not configured" in capsys.readouterr().out
    assert build_store.list_builds() == []


def test_run_build_reports_failure(use_resources, page_store, capsys):
    def broken_upsert(data):
        raise RuntimeError("disk full")

    page_store.upsert_page = broken_upsert

    assert main.run_build(config=None) == 1
    assert "failed: RuntimeError: disk full" in capsys.readouterr().out
