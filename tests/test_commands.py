import threading
from unittest.mock import MagicMock

from drug_monitor import commands, db
from drug_monitor.telegram_api import DeliveryError

DRUGS = ["Пентаса", "Салофальк"]


def _update(text, chat_id=100, update_id=1, username="anna"):
    return {
        "update_id": update_id,
        "message": {
            "chat": {"id": chat_id},
            "from": {"id": chat_id, "username": username, "first_name": "Anna"},
            "text": text,
        },
    }


def test_start_subscribes_and_lists_drugs(temp_db):
    client = MagicMock()

    commands.dispatch_update(client, _update("/start"), DRUGS)

    assert db.is_subscribed(100)
    chat_id, text = client.send_message.call_args.args
    assert chat_id == 100
    assert "• Пентаса" in text
    assert "• Салофальк" in text


def test_stop_unsubscribes(temp_db):
    client = MagicMock()
    db.add_subscriber(db.Subscriber(chat_id=100))

    commands.dispatch_update(client, _update("/stop"), DRUGS)

    assert not db.is_subscribed(100)
    assert "отписались" in client.send_message.call_args.args[1]


def test_stop_when_not_subscribed(temp_db):
    client = MagicMock()

    commands.dispatch_update(client, _update("/stop"), DRUGS)

    assert "не были подписаны" in client.send_message.call_args.args[1]


def test_status_reports_subscription(temp_db):
    client = MagicMock()
    db.add_subscriber(db.Subscriber(chat_id=100))

    commands.dispatch_update(client, _update("/status@drugs_bot"), DRUGS)

    text = client.send_message.call_args.args[1]
    assert "Вы подписаны" in text
    assert "• Пентаса" in text


def test_plain_text_is_ignored(temp_db):
    client = MagicMock()

    commands.dispatch_update(client, _update("hello /start"), DRUGS)
    commands.dispatch_update(client, {"update_id": 2}, DRUGS)

    client.send_message.assert_not_called()
    assert not db.is_subscribed(100)


def test_reply_failure_is_swallowed(temp_db):
    client = MagicMock()
    client.send_message.side_effect = DeliveryError(100, "Forbidden", error_code=403, permanent=True)

    commands.dispatch_update(client, _update("/start"), DRUGS)

    assert db.is_subscribed(100)


def test_poll_commands_advances_offset_and_stops(temp_db):
    stop = threading.Event()
    client = MagicMock()
    offsets = []

    def get_updates(offset=None, timeout=30):
        offsets.append(offset)
        if len(offsets) == 1:
            return [_update("/start", update_id=7)]
        stop.set()
        return []

    client.get_updates.side_effect = get_updates

    commands.poll_commands(client, stop, drugs=DRUGS, poll_timeout=1)

    assert offsets == [None, 8]
    assert db.is_subscribed(100)
