"""Telegram command handlers: /start, /stop, /status.

Updates are fetched by long polling in `poll_commands`, which runs in its own
thread next to the scheduler.
"""

from __future__ import annotations

import logging
import re
import threading
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

import requests

from . import config, db
from .telegram_api import DeliveryError, TelegramClient
from .utils import HTTPError

logger = logging.getLogger(__name__)

_COMMAND_RE = re.compile(r"^/(start|stop|status)(?:@\w+)?(?:\s|$)")


def _drug_bullets(drugs: Sequence[str]) -> str:
    return "\n".join(f"• {d}" for d in drugs)


def handle_start(message: Mapping[str, Any], drugs: Sequence[str]) -> Optional[str]:
    user = message.get("from")
    if not user:
        return None
    chat_id = message["chat"]["id"]
    db.add_subscriber(db.Subscriber(
        chat_id=chat_id,
        username=user.get("username"),
        first_name=user.get("first_name"),
        last_name=user.get("last_name"),
    ))
    logger.info("User %s subscribed", chat_id)
    return (
        "✅ Вы успешно подписались на уведомления о наличии лекарств!\n\n"
        "Теперь вы будете получать сообщения, когда отслеживаемые препараты появятся в наличии.\n\n"
        f"Отслеживаемые препараты:\n{_drug_bullets(drugs)}\n\n"
        "Чтобы отписаться, используйте команду /stop"
    )


def handle_stop(message: Mapping[str, Any], drugs: Sequence[str]) -> Optional[str]:
    chat_id = message["chat"]["id"]
    if db.deactivate_subscriber(chat_id):
        logger.info("User %s unsubscribed", chat_id)
        return (
            "❌ Вы отписались от уведомлений.\n\n"
            "Чтобы снова подписаться, используйте команду /start"
        )
    logger.warning("User %s was not subscribed", chat_id)
    return (
        "ℹ️ Вы не были подписаны на уведомления.\n\n"
        "Используйте команду /start для подписки"
    )


def handle_status(message: Mapping[str, Any], drugs: Sequence[str]) -> Optional[str]:
    chat_id = message["chat"]["id"]
    subscribed = db.is_subscribed(chat_id)
    logger.info("Status for %s: %s", chat_id, "subscribed" if subscribed else "not subscribed")
    if subscribed:
        return (
            "✅ Вы подписаны на уведомления\n\n"
            f"Отслеживаемые препараты:\n{_drug_bullets(drugs)}"
        )
    return (
        "❌ Вы не подписаны на уведомления\n\n"
        "Используйте команду /start для подписки"
    )


HANDLERS: Dict[str, Callable[[Mapping[str, Any], Sequence[str]], Optional[str]]] = {
    "start": handle_start,
    "stop": handle_stop,
    "status": handle_status,
}


def dispatch_update(client: TelegramClient, update: Mapping[str, Any], drugs: Sequence[str]) -> None:
    """Route one update to its command handler and send the reply."""
    message = update.get("message")
    if not message or "chat" not in message:
        return
    text = message.get("text") or ""
    sender = message.get("from") or {}
    logger.debug("Message from %s: %s", sender.get("username") or sender.get("id"), text)

    match = _COMMAND_RE.match(text)
    if not match:
        return
    command = match.group(1)
    logger.info("/%s from %s (chat_id: %s)", command, sender.get("username") or sender.get("id"), message["chat"]["id"])

    reply = HANDLERS[command](message, drugs)
    if reply is None:
        return
    try:
        client.send_message(message["chat"]["id"], reply, parse_mode=None)
    except DeliveryError as e:
        logger.error("Could not reply to /%s for %s: %s", command, e.chat_id, e.description)


def poll_commands(
    client: TelegramClient,
    stop_event: threading.Event,
    *,
    drugs: Sequence[str] = (),
    poll_timeout: int = config.TELEGRAM_POLL_TIMEOUT_SECONDS,
) -> None:
    """Serve bot commands until `stop_event` is set."""
    drugs = list(drugs) or config.DRUGS_TO_CHECK
    offset: Optional[int] = None
    logger.info("Telegram bot connected and waiting for commands")

    while not stop_event.is_set():
        try:
            updates = client.get_updates(offset=offset, timeout=poll_timeout)
        except (HTTPError, requests.RequestException, ValueError):
            logger.exception("Telegram polling error")
            stop_event.wait(5)
            continue

        for update in updates:
            offset = int(update["update_id"]) + 1
            try:
                dispatch_update(client, update, drugs)
            except Exception:
                logger.exception("Error handling update %s", update.get("update_id"))

    logger.info("Command polling stopped")


__all__ = [
    "HANDLERS",
    "dispatch_update",
    "handle_start",
    "handle_status",
    "handle_stop",
    "poll_commands",
]
