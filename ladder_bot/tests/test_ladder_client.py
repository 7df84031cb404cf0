import asyncio

import aiohttp
import pytest

from ladder_bot.core.ladder_client import LadderClient


class FakeResponse:
    def __init__(self, status=200, payload=None, error=None):
        self.status = status
        self._payload = payload
        self._error = error

    async def __aenter__(self):
        if self._error is not None:
            raise self._error
        return self

    async def __aexit__(self, *exc):
        return False

    async def json(self, content_type=None):
        return self._payload


class FakeSession:
    def __init__(self, response):
        self.response = response
        self.urls = []

    def get(self, url, timeout=None):
        self.urls.append(url)
        return self.response


def test_url_for_uses_format_id():
    client = LadderClient(base_url="https://example.org/ladder/")
    assert client.url_for("gen1ou") == "https://example.org/ladder/gen1ou.json"


def test_toplist_filters_non_rows():
    data = {"toplist": [{"userid": "a"}, "junk", {"userid": "b"}]}
    assert LadderClient._toplist(data, "gen1ou") == [{"userid": "a"}, {"userid": "b"}]
    assert LadderClient._toplist({"error": "nope"}, "gen1ou") is None
    assert LadderClient._toplist([], "gen1ou") is None


@pytest.mark.asyncio
async def test_fetch_returns_rows():
    session = FakeSession(FakeResponse(payload={"toplist": [{"userid": "a", "elo": 1500}]}))
    client = LadderClient(session=session)
    assert await client("gen1ou") == [{"userid": "a", "elo": 1500}]
    assert session.urls == ["https://pokemonshowdown.com/ladder/gen1ou.json"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        FakeResponse(status=503),
        FakeResponse(error=aiohttp.ClientConnectionError("refused")),
        FakeResponse(error=asyncio.TimeoutError()),
        FakeResponse(payload="not json at all"),
    ],
)
async def test_failed_pulls_return_none(response):
    client = LadderClient(session=FakeSession(response))
    assert await client.fetch("gen1ou") is None


@pytest.mark.asyncio
async def test_empty_format_is_not_fetched():
    session = FakeSession(FakeResponse())
    assert await LadderClient(session=session).fetch("") is None
    assert session.urls == []
