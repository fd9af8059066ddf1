"""Process-wide logging setup. Modules log through logging.getLogger(__name__)."""

import logging.config
from typing import Optional

from app.core.config import settings


def configure_logging(level: Optional[str] = None) -> None:
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
            },
            "loggers": {
                "app": {
                    "handlers": ["console"],
                    "level": (level or settings.log_level).upper(),
                    "propagate": True,
                },
                # Webhook signature failures and insecure-mode use land here.
                "app.security": {
                    "level": "WARNING",
                    "propagate": True,
                },
            },
        }
    )
