from unittest.mock import MagicMock, patch

import pytest
import requests

from drug_monitor.telegram_api import (
    DeliveryError,
    TelegramClient,
    TransportStartupError,
    is_permanent_failure,
)
from drug_monitor.utils import HTTPError


def _resp(payload, status_code=200):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = payload
    resp.text = ""
    return resp


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def client(session):
    return TelegramClient("123:abc", session=session, api_url="https://api.example.test")


def test_send_message_posts_html_without_preview(client, session):
    session.post.return_value = _resp({"ok": True, "result": {"message_id": 7}})

    result = client.send_message(42, "<b>hi</b>")

    args, kwargs = session.post.call_args
    assert args[0] == "https://api.example.test/bot123:abc/sendMessage"
    assert kwargs["json"] == {
        "chat_id": 42,
        "text": "<b>hi</b>",
        "disable_web_page_preview": True,
        "parse_mode": "HTML",
    }
    assert result == {"message_id": 7}


def test_blocked_bot_is_permanent(client, session):
    session.post.return_value = _resp(
        {"ok": False, "error_code": 403, "description": "Forbidden: bot was blocked by the user"},
        status_code=403,
    )

    with pytest.raises(DeliveryError) as exc:
        client.send_message(42, "hi")

    assert exc.value.permanent is True
    assert exc.value.chat_id == 42
    assert exc.value.error_code == 403


def test_rate_limit_is_transient(client, session):
    session.post.return_value = _resp(
        {"ok": False, "error_code": 429, "description": "Too Many Requests: retry after 3"},
        status_code=429,
    )

    with pytest.raises(DeliveryError) as exc:
        client.send_message(42, "hi")

    assert exc.value.permanent is False


def test_network_error_is_transient(client, session):
    session.post.side_effect = requests.ConnectionError("down")

    with pytest.raises(DeliveryError) as exc:
        client.send_message(42, "hi")

    assert exc.value.permanent is False


@pytest.mark.parametrize(
    "code,description,expected",
    [
        (403, "Forbidden: user is deactivated", True),
        (400, "Bad Request: chat not found", True),
        (400, "Bad Request: message is too long", False),
        (502, "Bad Gateway", False),
    ],
)
def test_is_permanent_failure(code, description, expected):
    assert is_permanent_failure(code, description) is expected


def test_get_me_returns_bot(client, session):
    session.get.return_value = _resp({"ok": True, "result": {"id": 1, "username": "drugs_bot"}})

    assert client.get_me()["username"] == "drugs_bot"


def test_get_me_unauthorized_is_startup_error(client, session):
    session.get.return_value = _resp({"ok": False, "error_code": 401, "description": "Unauthorized"}, 401)

    with pytest.raises(TransportStartupError):
        client.get_me()


def test_get_me_network_error_is_startup_error(client, session):
    session.get.side_effect = requests.ConnectionError("down")

    with pytest.raises(TransportStartupError):
        client.get_me()


def test_get_updates_passes_offset(client, session):
    session.get.return_value = _resp({"ok": True, "result": [{"update_id": 5}]})

    updates = client.get_updates(offset=5, timeout=1)

    _, kwargs = session.get.call_args
    assert kwargs["params"]["offset"] == 5
    assert updates == [{"update_id": 5}]


@pytest.mark.parametrize("body", [[], "ok", None])
def test_non_object_body_is_transient(client, session, body):
    session.post.return_value = _resp(body, status_code=200)

    with pytest.raises(DeliveryError) as exc:
        client.send_message(42, "hi")

    assert exc.value.permanent is False
    assert exc.value.chat_id == 42


def test_get_updates_rejects_non_object_body(client, session):
    session.get.return_value = _resp([])

    with pytest.raises(HTTPError):
        client.get_updates(timeout=1)


def test_each_call_opens_and_closes_its_own_session():
    sessions = [MagicMock(), MagicMock()]
    for s in sessions:
        s.post.return_value = _resp({"ok": True, "result": {}})
    client = TelegramClient("123:abc", api_url="https://api.example.test")

    with patch("drug_monitor.telegram_api.get_http_session", side_effect=sessions) as factory:
        client.send_message(1, "a")
        client.send_message(2, "b")

    assert factory.call_count == 2
    for s in sessions:
        s.post.assert_called_once()
        s.close.assert_called_once_with()


def test_close_leaves_per_call_sessions_alone():
    client = TelegramClient("123:abc", api_url="https://api.example.test")

    with patch("drug_monitor.telegram_api.get_http_session") as factory:
        client.close()

    factory.assert_not_called()
