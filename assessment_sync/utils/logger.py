# Logging setup shared by the admin server, the sync worker and the CLI
# assessment_sync/utils/logger.py
import logging
import sys
from assessment_sync.utils.config import settings

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logger(name: str = "assessment_sync", level: str | None = None) -> logging.Logger:
    """
    Returns the named logger writing to stdout at `level` (settings.log_level by default).
    Calling it again replaces the handler, so a reload or a CLI override never doubles output.
    """
    configured = logging.getLogger(name)
    configured.setLevel(getattr(logging, (level or settings.log_level).upper(), logging.INFO))

    configured.handlers.clear()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    configured.addHandler(handler)

    # uvicorn configures the root logger as well
    configured.propagate = False
    return configured


logger = configure_logger()
