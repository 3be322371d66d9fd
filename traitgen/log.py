import logging
import sys
from typing import List, Optional


DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(
    level: str = "INFO",
    filename: Optional[str] = None,
    format_string: Optional[str] = None,
) -> None:
    """
    Configure application-wide logging for the CLI.

    Logs go to `filename` when given, otherwise to stdout. Safe to call more
    than once; later calls replace earlier handlers.
    """
    handler: logging.Handler
    if filename:
        handler = logging.FileHandler(filename)
    else:
        handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(format_string or DEFAULT_FORMAT))

    handlers: List[logging.Handler] = [handler]
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        handlers=handlers,
        force=True,
    )
    logging.getLogger("PIL").setLevel(logging.WARNING)
