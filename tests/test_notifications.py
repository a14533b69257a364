from unittest.mock import AsyncMock

import httpx
import pytest

from caresync.models.care import PushCategory
from caresync.models.chat import MessageKind
from caresync.notifications.expo import ExpoPushClient, build_message, is_expo_push_token
from caresync.notifications.notifier import DefaultNotifier
from caresync.utils.error_handling import NetworkError
from conftest import FakeProfileRepository, make_profile

EXPO_URL = "https://exp.host/--/api/v2/push/send"


class FakeChatRepository:
    def __init__(self):
        self.messages = []

    def add_message(self, message):
        self.messages.append(message)
        return message


def tickets(count, status="ok"):
    return httpx.Response(200, json={"data": [{"status": status, "id": str(i)} for i in range(count)]})


def test_is_expo_push_token():
    assert is_expo_push_token("ExponentPushToken[abc123]")
    assert is_expo_push_token("ExpoPushToken[abc123]")
    assert not is_expo_push_token("abc123")
    assert not is_expo_push_token("ExponentPushToken[]")
    assert not is_expo_push_token(None)


def test_build_message_defaults():
    message = build_message("ExpoPushToken[a]", "Title", "Body", {"alertId": "1"})
    assert message["sound"] == "default"
    assert message["priority"] == "high"
    assert message["channelId"] == "alerts"
    assert message["data"] == {"alertId": "1"}


@pytest.mark.asyncio
async def test_send_chunks_by_hundred(monkeypatch):
    client = ExpoPushClient()
    mock_post = AsyncMock(side_effect=[tickets(100), tickets(100), tickets(50, "error")])
    monkeypatch.setattr(client._client, "post", mock_post)
    messages = [build_message(f"ExpoPushToken[{i}]", "t", "b", {}) for i in range(250)]

    result = await client.send(messages)

    assert len(result) == 250
    assert [len(call.kwargs["json"]) for call in mock_post.call_args_list] == [100, 100, 50]
    assert mock_post.call_args.args[0] == EXPO_URL


@pytest.mark.asyncio
async def test_send_failure_raises(monkeypatch):
    client = ExpoPushClient()
    monkeypatch.setattr(client._client, "post", AsyncMock(return_value=httpx.Response(500, text="boom")))
    with pytest.raises(NetworkError):
        await client.send([build_message("ExpoPushToken[a]", "t", "b", {})])

    monkeypatch.setattr(client._client, "post", AsyncMock(side_effect=httpx.ConnectError("down")))
    with pytest.raises(NetworkError):
        await client.send([build_message("ExpoPushToken[a]", "t", "b", {})])


@pytest.fixture
def push_client():
    client = AsyncMock(spec=ExpoPushClient)
    client.send.return_value = []
    return client


@pytest.fixture
def default_notifier(push_client):
    profiles = FakeProfileRepository([
        make_profile("owner1", "Alex", push_token="ExpoPushToken[owner]"),
        make_profile("sam", "Sam", push_token="ExpoPushToken[sam]", push_preferences={"acknowledgments": False}),
        make_profile("kim", "Kim", push_token="not-a-token"),
        make_profile("lee", "Lee", push_token="ExpoPushToken[lee]", push_preferences={"acknowledgments": True}),
    ])
    return DefaultNotifier(FakeChatRepository(), profiles, push_client)


@pytest.mark.asyncio
async def test_filtered_push_respects_preferences_and_tokens(default_notifier, push_client):
    sent = await default_notifier.send_filtered_push(
        ["owner1", "sam", "kim", "lee", "nobody", "sam"], "✅ Alert Acknowledged", "Sam: hi", {}, PushCategory.ACKNOWLEDGMENTS
    )
    assert sent == 2
    messages = push_client.send.call_args.args[0]
    assert [m["to"] for m in messages] == ["ExpoPushToken[owner]", "ExpoPushToken[lee]"]


@pytest.mark.asyncio
async def test_unset_preference_defaults_to_enabled(default_notifier, push_client):
    sent = await default_notifier.send_filtered_push(["sam"], "t", "b", {}, PushCategory.GLUCOSE_ALERTS)
    assert sent == 1


@pytest.mark.asyncio
async def test_no_tokens_sends_nothing(default_notifier, push_client):
    assert await default_notifier.send_filtered_push(["kim"], "t", "b", {}, PushCategory.GLUCOSE_ALERTS) == 0
    assert await default_notifier.send_filtered_push([], "t", "b", {}) == 0
    push_client.send.assert_not_called()


@pytest.mark.asyncio
async def test_post_chat_message(default_notifier):
    message = await default_notifier.post_chat_message("rel-1", "hello", MessageKind.SYSTEM, alert_id="a1", sender_id="sam")
    assert message.conversation_id == "rel-1"
    assert default_notifier.chat.messages == [message]
