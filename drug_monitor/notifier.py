"""Telegram notifier.

Formats one availability message per drug and delivers it to every
subscriber in turn.  A failed delivery never stops the remaining ones;
subscribers whose chat is permanently unreachable are deactivated.
"""
from __future__ import annotations

import html
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Protocol, Sequence

from .config import PHARMACY_REFERENCE_URL
from .db import Subscriber
from .pharmacy_api import CheckResult, Pharmacy
from .telegram_api import DeliveryError

logger = logging.getLogger(__name__)


class MessageTransport(Protocol):
    def send_message(
        self,
        chat_id: int,
        text: str,
        *,
        parse_mode: str = ...,
        disable_web_page_preview: bool = ...,
    ) -> object: ...


@dataclass
class DeliveryReport:
    sent: int = 0
    failed: int = 0
    deactivated: List[int] = field(default_factory=list)


def _short_hours(working_time: str) -> str:
    # The API appends the full weekly timetable; the first four words carry today's hours.
    return " ".join(working_time.split(" ")[:4])


def _format_pharmacy(index: int, p: Pharmacy) -> str:
    return (
        f"{index}. <b>{html.escape(p.store_name)}</b>\n"
        f"   📍 {html.escape(p.store_address)} ({html.escape(p.store_district)})\n"
        f"   🕐 {html.escape(_short_hours(p.working_time))}\n"
        f"   💊 {html.escape(p.drug_name)}\n\n"
    )


def build_message(drug_name: str, result: CheckResult, *, reference_url: str = PHARMACY_REFERENCE_URL) -> str:
    """Return the HTML notification text for one drug."""
    name = html.escape(drug_name)
    link = html.escape(reference_url, quote=True)

    if result.is_available and result.pharmacy_count and result.pharmacies:
        parts = [
            f'✅ <b>Препарат "{name}" ЕСТЬ В НАЛИЧИИ!</b>\n\n',
            f"🏥 Найден в <b>{result.pharmacy_count}</b> аптеках Санкт-Петербурга\n\n",
            "📍 Ближайшие аптеки:\n",
        ]
        parts.extend(_format_pharmacy(i, p) for i, p in enumerate(result.pharmacies, start=1))
        parts.append(f'🔗 <a href="{link}">Посмотреть все аптеки</a>')
        return "".join(parts)

    return (
        f'❌ <b>Препарат "{name}" НЕТ в наличии</b>\n\n'
        "К сожалению, препарат не найден в аптеках Санкт-Петербурга.\n\n"
        f'🔗 <a href="{link}">Проверить самостоятельно</a>'
    )


def notify_subscribers(
    drug_name: str,
    result: CheckResult,
    subscribers: Sequence[Subscriber],
    *,
    transport: MessageTransport,
    deactivate: Callable[[int], bool],
) -> DeliveryReport:
    """Send the availability message for one drug to every subscriber.

    Deliveries are sequential and isolated.  Any error from the transport is
    counted in the returned DeliveryReport, never raised.
    """
    report = DeliveryReport()
    status = "AVAILABLE" if result.is_available else "not available"
    logger.info(
        "Sending notifications to %d subscribers for %s (%s)",
        len(subscribers), drug_name, status,
    )
    if not subscribers:
        logger.info("No active subscribers to notify")
        return report

    message = build_message(drug_name, result)

    for sub in subscribers:
        try:
            transport.send_message(
                sub.chat_id,
                message,
                parse_mode="HTML",
                disable_web_page_preview=True,
            )
        except DeliveryError as e:
            report.failed += 1
            logger.error("Failed to deliver to %s: %s", sub.chat_id, e.description)
            if e.permanent:
                try:
                    if deactivate(sub.chat_id):
                        report.deactivated.append(sub.chat_id)
                        logger.info("Subscriber %s deactivated (chat unreachable)", sub.chat_id)
                except Exception:
                    # a registry failure must not cut off the remaining subscribers
                    logger.exception("Could not deactivate subscriber %s", sub.chat_id)
            continue
        except Exception:
            report.failed += 1
            logger.exception("Unexpected error delivering to %s", sub.chat_id)
            continue
        report.sent += 1
        logger.info("Message sent to %s (%s)", sub.chat_id, sub.username or "no username")

    logger.info("Delivery summary for %s: sent %d, failed %d", drug_name, report.sent, report.failed)
    return report


__all__ = ["DeliveryReport", "MessageTransport", "build_message", "notify_subscribers"]
