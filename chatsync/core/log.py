import logging
from typing import Optional

from chatsync.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(level: Optional[str] = None) -> None:
    """Configure logging for an application embedding the synchronizer"""
    if level is None:
        level = "DEBUG" if settings.DEBUG else settings.LOG_LEVEL
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    logging.getLogger("chatsync").setLevel(level.upper())
