import logging
import re
from typing import Iterable, Union


_HEX_DIGEST = re.compile(r"\b([0-9a-fA-F]{12})[0-9a-fA-F]{52}\b")


class DigestAbbreviatingFilter(logging.Filter):
    """Shorten 32-byte hex digests in log records to a 12-char prefix."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            msg = str(record.getMessage())
            record.msg = _HEX_DIGEST.sub(r"\1…", msg)
            record.args = None
        except Exception:
            pass
        return True


def setup_logging(
    level: Union[int, str] = logging.INFO,
    loggers: Iterable[str] = ("proofstore_api", "proofstore_sdk"),
) -> None:
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(level=level)
    f = DigestAbbreviatingFilter()
    # records from child loggers skip logger-level filters, so filter at the handlers
    for h in logging.getLogger().handlers:
        h.addFilter(f)
    for name in loggers:
        logging.getLogger(name).setLevel(level)
