"""MediaWiki client: request shapes, pagination and the never-raise boundary."""

import pytest
import requests

import mediawiki_api
from config import WikiSourceConfig
from mediawiki_api import MediaWikiClient, WikiPageData, WikiSource

API_URL = "https://wiki.example.org/api.php"


class FakeResponse:
    def __init__(self, payload, status_code: int = 200) -> None:
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Server Error")

    def json(self):
        return self.payload


class FakeApi:
    """Stands in for `requests.get`; answers from a list of handlers in order."""

    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.calls: list[dict] = []

    def __call__(self, url, params=None, headers=None, timeout=None):
        self.calls.append({"url": url, "params": dict(params or {}), "headers": headers, "timeout": timeout})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def client() -> MediaWikiClient:
    return MediaWikiClient(API_URL, user_agent="tests/1.0", timeout=5, max_retries=1, retry_backoff_seconds=0)


def install(monkeypatch, api: FakeApi) -> FakeApi:
    monkeypatch.setattr(mediawiki_api.requests, "get", api)
    return api


def test_client_satisfies_wiki_source(client):
    assert isinstance(client, WikiSource)


def test_from_config():
    config = WikiSourceConfig(
        base_url="https://wiki.example.org",
        api_url=API_URL,
        user_agent="ua",
        request_timeout=12.0,
        max_retries=4,
        retry_backoff_seconds=0.25,
    )

    client = MediaWikiClient.from_config(config)

    assert (client.api_url, client.timeout, client.max_retries) == (API_URL, 12.0, 4)


async def test_list_page_names_follows_continuation(client, monkeypatch):
    api = install(
        monkeypatch,
        FakeApi(
            FakeResponse(
                {
                    "continue": {"apcontinue": "Gamma", "continue": "-||"},
                    "query": {"allpages": [{"pageid": 1, "title": "Alpha"}, {"pageid": 2, "title": "Beta"}]},
                }
            ),
            FakeResponse({"query": {"allpages": [{"pageid": 3, "title": "Gamma"}]}}),
        ),
    )

    titles = await client.list_page_names()

    assert titles == ["Alpha", "Beta", "Gamma"]
    assert api.calls[0]["params"]["list"] == "allpages"
    assert "apcontinue" not in api.calls[0]["params"]
    assert api.calls[1]["params"]["apcontinue"] == "Gamma"
    assert "continue" not in api.calls[1]["params"]
    assert api.calls[0]["headers"] == {"User-Agent": "tests/1.0"}
    assert api.calls[0]["timeout"] == 5


async def test_list_page_names_returns_empty_on_failure(client, monkeypatch):
    install(monkeypatch, FakeApi(requests.ConnectionError("down"), requests.ConnectionError("still down")))

    assert await client.list_page_names() == []


async def test_retries_then_succeeds(client, monkeypatch):
    api = install(
        monkeypatch,
        FakeApi(
            FakeResponse({}, status_code=503),
            FakeResponse({"query": {"allpages": [{"title": "Alpha"}]}}),
        ),
    )

    assert await client.list_page_names() == ["Alpha"]
    assert len(api.calls) == 2


async def test_fetch_page(client, monkeypatch):
    api = install(
        monkeypatch,
        FakeApi(
            FakeResponse(
                {
                    "query": {
                        "pages": [
                            {"pageid": 42, "title": "Foo Bar", "fullurl": "https://wiki.example.org/wiki/Foo_Bar"}
                        ]
                    }
                }
            ),
            FakeResponse({"parse": {"pageid": 42, "title": "Foo Bar", "text": "<p>hello</p>"}}),
        ),
    )

    page = await client.fetch_page("foo bar")

    assert page == WikiPageData(
        wiki_id=42, title="Foo Bar", url="https://wiki.example.org/wiki/Foo_Bar", html="<p>hello</p>"
    )
    assert api.calls[0]["params"]["titles"] == "foo bar"
    assert api.calls[0]["params"]["inprop"] == "url"
    assert api.calls[1]["params"]["action"] == "parse"
    assert api.calls[1]["params"]["pageid"] == "42"


async def test_fetch_missing_page_returns_none(client, monkeypatch):
    install(monkeypatch, FakeApi(FakeResponse({"query": {"pages": [{"title": "Nope", "missing": True}]}})))

    assert await client.fetch_page("Nope") is None


async def test_fetch_page_api_error_returns_none(client, monkeypatch):
    install(
        monkeypatch,
        FakeApi(
            FakeResponse({"query": {"pages": [{"pageid": 1, "title": "Foo", "fullurl": "https://w/wiki/Foo"}]}}),
            FakeResponse({"error": {"code": "nosuchpageid", "info": "There is no page with ID 1."}}),
        ),
    )

    assert await client.fetch_page("Foo") is None


async def test_fetch_page_network_failure_returns_none(client, monkeypatch):
    install(monkeypatch, FakeApi(requests.Timeout("slow"), requests.Timeout("slower")))

    assert await client.fetch_page("Foo") is None
