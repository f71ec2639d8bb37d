import logging

from wallet_hub.config import settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
# Per-request chatter from the HTTP stack; the custody client logs its own line.
QUIET_LOGGERS = ("httpx", "httpcore")


def get_logger(name: str) -> logging.Logger:
    """
    Return a module-scoped logger for the hub.

    The root handler is installed on first use and the level follows the
    ``log_level`` setting.
    """
    level = logging.getLevelName(settings.log_level)
    if not logging.getLogger().handlers:
        logging.basicConfig(level=level, format=LOG_FORMAT)
        for quiet in QUIET_LOGGERS:
            logging.getLogger(quiet).setLevel(logging.WARNING)
    logger = logging.getLogger(name)
    logger.setLevel(level)
    return logger
