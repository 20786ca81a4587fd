"""Expo push client tests."""

import asyncio
import json

import httpx
import pytest

from famguard.services.push_service import ExpoPushClient, PushDeliveryError

API_URL = "https://push.test/--/api/v2/push/send"


def client_for(handler):
    return ExpoPushClient(api_url=API_URL, access_token="secret", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def test_no_tokens_short_circuits():
    def handler(request):
        raise AssertionError("no request expected")

    result = asyncio.run(client_for(handler).send([], "t", "b", {}))

    assert result.sent == 0
    assert result.message == "No push tokens found"


def test_tickets_are_tallied():
    captured = {}

    def handler(request):
        captured["auth"] = request.headers.get("Authorization")
        captured["messages"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={"data": [{"status": "ok", "id": "x"}, {"status": "error", "message": "DeviceNotRegistered"}]},
        )

    result = asyncio.run(client_for(handler).send(["tok1", "tok2"], "Title", "Body", {"type": "incident_proximity"}))

    assert (result.sent, result.failed, result.total) == (1, 1, 2)
    assert captured["auth"] == "Bearer secret"
    assert [m["to"] for m in captured["messages"]] == ["tok1", "tok2"]
    assert captured["messages"][0]["data"] == {"type": "incident_proximity"}


def test_messages_are_chunked_by_hundred():
    sizes = []

    def handler(request):
        chunk = json.loads(request.content)
        sizes.append(len(chunk))
        return httpx.Response(200, json={"data": [{"status": "ok"} for _ in chunk]})

    tokens = [f"tok{i}" for i in range(250)]
    result = asyncio.run(client_for(handler).send(tokens, "t", "b", {}))

    assert sizes == [100, 100, 50]
    assert result.sent == 250


def test_missing_tickets_count_as_failed():
    def handler(request):
        return httpx.Response(200, json={"data": []})

    result = asyncio.run(client_for(handler).send(["tok1"], "t", "b", {}))

    assert result.failed == 1
    assert result.message == "No notifications were delivered"


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, text="upstream down"),
        httpx.Response(200, text="<html>"),
        httpx.Response(200, json={"errors": [{"code": "VALIDATION_ERROR"}]}),
    ],
)
def test_transport_and_protocol_errors_raise(response):
    def handler(request):
        return response

    with pytest.raises(PushDeliveryError):
        asyncio.run(client_for(handler).send(["tok1"], "t", "b", {}))
