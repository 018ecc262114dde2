"""
Logging setup.

Lines look like ``[INFO] 2024-05-01T07:00:00.123+09:00 - psnl_agent.action: ...``.
A SUCCESS level sits between INFO and WARNING for applied rate changes.
WARNING and above go to stderr, everything else to stdout.
"""
import logging
import sys
from datetime import datetime

SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

LOG_FORMAT = "[%(levelname)s] %(asctime)s - %(name)s: %(message)s"


class IsoFormatter(logging.Formatter):
    """Formatter with ISO-8601 timestamps in local time, including the offset."""

    def formatTime(self, record, datefmt=None):
        ts = datetime.fromtimestamp(record.created).astimezone()
        return ts.isoformat(timespec="milliseconds")


class _MaxLevelFilter(logging.Filter):
    def __init__(self, level: int):
        super().__init__()
        self.level = level

    def filter(self, record) -> bool:
        return record.levelno < self.level


def setup_logging(verbose: bool = False) -> None:
    formatter = IsoFormatter(LOG_FORMAT)

    out = logging.StreamHandler(sys.stdout)
    out.addFilter(_MaxLevelFilter(logging.WARNING))
    out.setFormatter(formatter)

    err = logging.StreamHandler(sys.stderr)
    err.setLevel(logging.WARNING)
    err.setFormatter(formatter)

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        handlers=[out, err],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)
