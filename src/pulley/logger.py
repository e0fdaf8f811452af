import logging
from typing import List

import notifiers.logging

from pulley.config import Settings

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s - %(message)s"


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(format=LOG_FORMAT, level=settings.LOG_LEVEL)
    logging.getLogger().setLevel(settings.LOG_LEVEL)
    logging.getLogger("pulley").setLevel(settings.LOG_LEVEL)


def get_log_handlers(
    logger: logging.Logger, settings: Settings
) -> List[logging.Handler]:
    if settings.TELEGRAM_TOKEN is None:
        return []
    handler = notifiers.logging.NotificationHandler(
        "telegram",
        defaults={
            "token": settings.TELEGRAM_TOKEN,
            "chat_id": settings.TELEGRAM_CHAT_ID,
        },
    )
    handler.setLevel(logging.WARNING)
    logger.addHandler(handler)
    return [handler]
