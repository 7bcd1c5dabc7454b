"""
Process wiring.

Builds the object graph shared by the CLI and the API:
settings -> SearchArea -> upstream client -> ResultCache -> PollingScheduler (+ notifier).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from impfrust.config.settings import Settings
from impfrust.core.cache import ResultCache
from impfrust.core.geo import SearchArea
from impfrust.ingestion.feed_client import HttpFeedClient
from impfrust.ingestion.upstream import UpstreamClient
from impfrust.notify.telegram import TelegramNotifier
from impfrust.poller.scheduler import PollingScheduler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Runtime:
    settings: Settings
    area: SearchArea
    cache: ResultCache
    scheduler: PollingScheduler


def build_runtime(settings: Settings, *, client: UpstreamClient | None = None, notify: bool = True) -> Runtime:
    """Assemble a runtime; raises `InvalidConfigurationError` if no upstream is configured.

    `notify=False` skips the Telegram listener (used by one-shot CLI runs).
    """
    area = settings.search.to_area()
    upstream = client if client is not None else HttpFeedClient(settings, area)
    cache = ResultCache()
    scheduler = PollingScheduler(client=upstream, cache=cache, area=area, settings=settings.poller)

    telegram = settings.notify.telegram
    if not notify:
        logger.debug("Notifications skipped for this runtime")
    elif telegram.configured:
        scheduler.add_listener(TelegramNotifier(telegram, area))
        logger.info("Telegram notifications enabled")
    elif telegram.enabled:
        logger.info("Telegram notifications disabled (TELEGRAM_TOKEN / TELEGRAM_CHAT_ID not set)")

    return Runtime(settings=settings, area=area, cache=cache, scheduler=scheduler)
