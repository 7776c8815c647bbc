import logging
import sys
from typing import Optional

from helpdesk.config import get_settings


LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    level = (level or get_settings().LOG_LEVEL).upper()
    root = logging.getLogger()
    if not any(getattr(h, "_helpdesk", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._helpdesk = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    root.setLevel(level)
    # motor/pymongo are chatty at DEBUG
    logging.getLogger("pymongo").setLevel(max(logging.INFO, root.level))
