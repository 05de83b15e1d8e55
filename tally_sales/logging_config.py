import logging
import os
from datetime import datetime
from typing import Optional

from tally_sales import config

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

_configured = False


def setup_logging(log_dir: Optional[str] = None, level: Optional[str] = None) -> None:
    """Send logs to a dated file under the log directory and to the console.

    Safe to call more than once; only the first call installs handlers.
    """
    global _configured
    if _configured:
        return

    log_dir = log_dir or config.LOG_DIR
    os.makedirs(log_dir, exist_ok=True)

    logging.basicConfig(
        level=getattr(logging, (level or config.LOG_LEVEL).upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[
            logging.FileHandler(
                os.path.join(log_dir, f"tally_sales_{datetime.now():%Y%m%d}.log"),
                encoding="utf-8",
            ),
            logging.StreamHandler(),
        ],
    )
    _configured = True
