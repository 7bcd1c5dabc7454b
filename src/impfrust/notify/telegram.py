"""
Telegram notifications for newly appeared slots.

Registered as a snapshot listener on the poller. Only records that were not in the
previous snapshot are announced; a failed send is logged and never affects polling.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Iterable

import httpx

from impfrust.config.settings import TelegramSettings
from impfrust.core.geo import SearchArea, haversine_km
from impfrust.core.http import post_form
from impfrust.domain.models import AvailabilityRecord, Snapshot
from impfrust.notify.tracker import NewSlotTracker

logger = logging.getLogger(__name__)


def format_message(records: Iterable[AvailabilityRecord], area: SearchArea) -> str:
    """One line per label: `Label (12.3km): 2021-05-29,2021-05-30`."""
    grouped: OrderedDict[str, tuple[float, set[str]]] = OrderedDict()
    for record in records:
        distance = haversine_km(area.center, record.location)
        key = record.label
        prev_distance, dates = grouped.get(key, (distance, set()))
        dates.add(record.window.earliest.date().isoformat())
        grouped[key] = (min(prev_distance, distance), dates)

    return "\n".join(
        f"{label} ({distance:.1f}km): {','.join(sorted(dates))}" for label, (distance, dates) in grouped.items()
    )


class TelegramNotifier:
    """Posts new records to a Telegram chat via the Bot API `sendMessage` method."""

    def __init__(self, settings: TelegramSettings, area: SearchArea, tracker: NewSlotTracker | None = None):
        if not settings.configured:
            raise ValueError("Telegram notifier requires notify.telegram.token and notify.telegram.chat_id.")
        self._settings = settings
        self._area = area
        self._tracker = tracker or NewSlotTracker()

    def _send_url(self) -> str:
        return f"{self._settings.api_base.rstrip('/')}/bot{self._settings.token}/sendMessage"

    def send(self, text: str) -> bool:
        try:
            status = post_form(
                self._send_url(),
                data={"chat_id": self._settings.chat_id, "text": text},
                timeout_seconds=self._settings.timeout_seconds,
            )
        except httpx.HTTPError as exc:
            # The URL embeds the bot token; log the error type only.
            logger.error("Telegram send failed: %s", type(exc).__name__)
            return False
        logger.info("Telegram notification sent with status=%s", status)
        return True

    def __call__(self, snapshot: Snapshot) -> None:
        fresh = self._tracker.diff(snapshot)
        if not fresh:
            logger.info("Nothing new...")
            return
        self.send(format_message(fresh, self._area))
