"""Default Notifier and SoundAlert adapters that write to the log."""

import logging

logger = logging.getLogger(__name__)


class LoggingNotifier:
    """Notifier that logs toasts; for headless runs."""

    def info(self, message: str) -> None:
        logger.info(message)

    def success(self, message: str) -> None:
        logger.info(message)

    def error(self, message: str) -> None:
        logger.error(message)


class LoggingSoundAlert:
    def play(self) -> None:
        logger.info("New inbound message")
