# exam_engine/core/logging_config.py
import logging

from exam_engine.core.config import settings

_configured = False


def configure_logging(level: str | None = None) -> None:
    """Configure root logging once for the API process or a worker."""
    global _configured
    if _configured:
        return

    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format=settings.LOG_FORMAT,
    )
    _configured = True
