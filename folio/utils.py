import sys

from loguru import logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


def configure_logging(level: str = "INFO", debug: bool = False) -> None:
    """
    Replace loguru's default sink with a single stderr sink.

    `debug` forces DEBUG level so cache and deduplicator traces show up.
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if debug else level.upper(),
        format=LOG_FORMAT,
        backtrace=debug,
        diagnose=debug,
    )
    logger.debug(f"Logging configured at {'DEBUG' if debug else level.upper()}")
