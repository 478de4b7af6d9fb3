from __future__ import annotations

import logging

_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def setup_logging(level: str = "INFO") -> None:
    numeric_level = logging.getLevelName(str(level).upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    logging.basicConfig(level=numeric_level, format=_FORMAT, force=True)
    # urllib3 logs every connection at DEBUG.
    logging.getLogger("urllib3").setLevel(max(numeric_level, logging.INFO))
