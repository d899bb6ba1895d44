import asyncio
import json
from urllib.parse import parse_qs

import httpx
import pytest

from app.integrations.messaging import (
    GatewayAPIError,
    GatewayConfigurationError,
    GatewayRateLimitedError,
    GatewayTransportError,
    SlackGateway,
)


def _gateway(handler, *, client_id: str | None = "client-id", client_secret: str | None = "client-secret") -> SlackGateway:
    return SlackGateway(
        client_id=client_id,
        client_secret=client_secret,
        base_url="https://slack.test/api",
        transport=httpx.MockTransport(handler),
    )


def test_post_message_sends_bearer_token_and_json_body() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"ok": True, "channel": "C1", "ts": "1700000000.000100"})

    result = asyncio.run(_gateway(handler).post_message(token="xoxb-1", channel_id="C1", text="hello", as_user=True))

    assert result == {"channel": "C1", "ts": "1700000000.000100"}
    request = seen[0]
    assert request.method == "POST"
    assert str(request.url) == "https://slack.test/api/chat.postMessage"
    assert request.headers["Authorization"] == "Bearer xoxb-1"
    assert json.loads(request.content) == {"channel": "C1", "text": "hello", "as_user": True}


def test_post_message_ok_false_is_api_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"ok": False, "error": "channel_not_found"})

    with pytest.raises(GatewayAPIError) as exc_info:
        asyncio.run(_gateway(handler).post_message(token="xoxb-1", channel_id="C404", text="x"))

    assert exc_info.value.error_code == "channel_not_found"


def test_rate_limit_carries_retry_after() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, headers={"Retry-After": "30"})

    with pytest.raises(GatewayRateLimitedError) as exc_info:
        asyncio.run(_gateway(handler).post_message(token="xoxb-1", channel_id="C1", text="x"))

    assert exc_info.value.retry_after_seconds == 30
    assert exc_info.value.error_code == "rate_limited"


def test_http_error_status_is_api_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="unavailable")

    with pytest.raises(GatewayAPIError) as exc_info:
        asyncio.run(_gateway(handler).post_message(token="xoxb-1", channel_id="C1", text="x"))

    assert exc_info.value.error_code == "http_503"


def test_transport_failure_is_wrapped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(GatewayTransportError):
        asyncio.run(_gateway(handler).post_message(token="xoxb-1", channel_id="C1", text="x"))


def test_refresh_token_posts_refresh_grant() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={"ok": True, "access_token": "xoxb-new", "refresh_token": "xoxe-new", "expires_in": 43200},
        )

    refreshed = asyncio.run(_gateway(handler).refresh_token("xoxe-old"))

    assert refreshed.access_token == "xoxb-new"
    assert refreshed.refresh_token == "xoxe-new"
    assert refreshed.expires_in == 43200
    request = seen[0]
    assert str(request.url) == "https://slack.test/api/oauth.v2.access"
    assert parse_qs(request.content.decode("utf-8")) == {
        "client_id": ["client-id"],
        "client_secret": ["client-secret"],
        "grant_type": ["refresh_token"],
        "refresh_token": ["xoxe-old"],
    }


def test_refresh_token_without_rotation() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"ok": True, "access_token": "xoxb-new", "expires_in": 3600})

    refreshed = asyncio.run(_gateway(handler).refresh_token("xoxe-old"))

    assert refreshed.refresh_token is None
    assert refreshed.expires_in == 3600


def test_refresh_token_rejected_by_slack() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"ok": False, "error": "invalid_refresh_token"})

    with pytest.raises(GatewayAPIError) as exc_info:
        asyncio.run(_gateway(handler).refresh_token("xoxe-old"))

    assert exc_info.value.error_code == "invalid_refresh_token"


def test_refresh_token_requires_client_configuration() -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"ok": True})

    with pytest.raises(GatewayConfigurationError):
        asyncio.run(_gateway(handler, client_secret=None).refresh_token("xoxe-old"))
    assert calls == []


def test_list_channels_follows_cursor_and_keeps_member_channels() -> None:
    seen: list[httpx.Request] = []
    pages = {
        "": {
            "ok": True,
            "channels": [{"id": "C1", "name": "general", "is_member": True}, {"id": "C2", "name": "random", "is_member": False}],
            "response_metadata": {"next_cursor": "page-2"},
        },
        "page-2": {
            "ok": True,
            "channels": [{"id": "C3", "name": "team", "is_member": True}],
            "response_metadata": {"next_cursor": ""},
        },
    }

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=pages[request.url.params.get("cursor", "")])

    channels = asyncio.run(_gateway(handler).list_channels(token="xoxp-1"))

    assert [item["id"] for item in channels] == ["C1", "C3"]
    assert all(request.method == "GET" for request in seen)
    assert seen[0].url.params["types"] == "public_channel"
    assert seen[0].headers["Authorization"] == "Bearer xoxp-1"
