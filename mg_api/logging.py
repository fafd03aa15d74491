import os
import sys

from loguru import logger

_STDERR_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level> | "
    "{extra}"
)


def setup_logging(level="INFO", log_dir="logs"):
    """Route all records to stderr and to a rotating JSON-lines file.

    Args:
        level: Minimum level for both sinks
        log_dir: Directory of mg_api.jsonl, created if missing
    """
    logger.remove()
    os.makedirs(log_dir, exist_ok=True)
    logger.add(os.path.join(log_dir, "mg_api.jsonl"), serialize=True, rotation="10 MB", level=level)
    logger.add(sys.stderr, format=_STDERR_FORMAT, level=level)
    return logger
