from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

LOG_DIR = Path("logs")
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(
    level: int = logging.INFO,
    log_dir: Optional[Union[str, Path]] = None,
    console: bool = False,
) -> Path:
    """Log to ``<log_dir>/mapterm.log``; add stderr only when *console*.

    While the preview owns the terminal, log lines would tear the
    rendered frame, so interactive sessions log to the file only.
    """
    directory = Path(log_dir) if log_dir else LOG_DIR
    directory.mkdir(parents=True, exist_ok=True)
    logfile = directory / "mapterm.log"

    handlers = [logging.FileHandler(logfile, encoding="utf-8")]
    if console:
        handlers.append(logging.StreamHandler())
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
    # urllib3 logs every connection at DEBUG
    logging.getLogger("urllib3").setLevel(max(level, logging.INFO))
    return logfile
