# tests/test_remote_client.py

import json

import httpx
import pytest

from shared.exceptions import RemoteSyncError
from shared.models import Announcement
from shared.remote_client import RemoteClient


def make_client(handler, **kwargs):
    kwargs.setdefault("retry_attempts", 2)
    kwargs.setdefault("retry_delay", 0)
    return RemoteClient(
        base_url="http://remote.test/api",
        token="secret-token",
        transport=httpx.MockTransport(handler),
        **kwargs
    )


@pytest.fixture
def record():
    return Announcement(local_id=7, group_id="G2", content="Promo", interval=2, unit="hours")


def test_client_init():
    client = RemoteClient(base_url="http://remote.test/api/", token="abc")
    assert client.base_url == "http://remote.test/api"
    assert client.headers["Authorization"] == "Bearer abc"
    assert client.is_enabled()


async def test_list_all_returns_data():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"success": True, "data": [{"id": 1, "local_ad_id": "3"}]})

    client = make_client(handler)
    assert await client.list_all() == [{"id": 1, "local_ad_id": "3"}]
    assert seen[0].method == "GET"
    assert seen[0].url.path == "/api/ads"
    assert seen[0].headers["Authorization"] == "Bearer secret-token"
    await client.aclose()


async def test_list_all_rejects_unsuccessful_body():
    client = make_client(lambda request: httpx.Response(200, json={"success": False}))
    with pytest.raises(RemoteSyncError):
        await client.list_all()
    await client.aclose()


async def test_create_sends_correlation_payload(record):
    payloads = []

    def handler(request):
        payloads.append(json.loads(request.content))
        return httpx.Response(201, json={"success": True, "data": {"id": 55}})

    client = make_client(handler)
    assert await client.create(record) == "55"
    assert payloads == [{
        "group_id": "G2",
        "content": "Promo",
        "interval": 2,
        "unit": "hours",
        "local_ad_id": "7",
    }]
    await client.aclose()


async def test_delete_by_correlation_sends_group_in_body():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"success": True})

    client = make_client(handler)
    await client.delete_by_correlation(7, "G2")
    assert requests[0].method == "DELETE"
    assert requests[0].url.path == "/api/ads/local/7"
    assert json.loads(requests[0].content) == {"group_id": "G2"}
    await client.aclose()


async def test_mark_sent_posts_to_remote_id():
    paths = []

    def handler(request):
        paths.append((request.method, request.url.path))
        return httpx.Response(204)

    client = make_client(handler)
    await client.mark_sent("55")
    assert paths == [("POST", "/api/ads/55/sent")]
    await client.aclose()


async def test_retries_with_fixed_delay_until_success():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) < 3:
            return httpx.Response(503)
        return httpx.Response(200, json={"success": True, "data": []})

    client = make_client(handler, retry_attempts=2)
    assert await client.list_all() == []
    assert len(calls) == 3
    await client.aclose()


async def test_raises_after_attempts_exhausted():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500, json={"message": "down"})

    client = make_client(handler, retry_attempts=2)
    with pytest.raises(RemoteSyncError) as exc_info:
        await client.mark_sent("1")
    assert exc_info.value.status_code == 500
    assert len(calls) == 3
    await client.aclose()


async def test_network_errors_are_retried():
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(handler, retry_attempts=1)
    with pytest.raises(RemoteSyncError):
        await client.delete_by_correlation(1, "G1")
    assert len(calls) == 2
    await client.aclose()


async def test_test_connection_reports_failure_without_raising():
    client = make_client(lambda request: httpx.Response(500), retry_attempts=0)
    assert await client.test_connection() is False
    await client.aclose()


async def test_test_connection_success():
    client = make_client(lambda request: httpx.Response(200, json={"ok": True}))
    assert await client.test_connection() is True
    await client.aclose()


async def test_disabled_client_never_touches_network(record):
    def handler(request):
        raise AssertionError("network must not be used")

    client = make_client(handler, enabled=False)
    assert await client.list_all() == []
    assert await client.create(record) is None
    assert await client.delete_by_correlation(7, "G2") is None
    assert await client.mark_sent("55") is None
    assert await client.test_connection() is False
    await client.aclose()
