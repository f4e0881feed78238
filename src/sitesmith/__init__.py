# Sitesmith package init
import logging
import os


def _configure_logging() -> None:
    level_name = (os.getenv("SITESMITH_LOG_LEVEL") or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logger = logging.getLogger("sitesmith")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("[SITESMITH][%(levelname)s] %(message)s"))
        logger.addHandler(handler)
    logger.setLevel(level)

    stream_level_name = (os.getenv("SITESMITH_LLM_LOG_LEVEL") or level_name).upper()
    stream_level = getattr(logging, stream_level_name, level)
    logging.getLogger("sitesmith.stream").setLevel(stream_level)


_configure_logging()
