import logging

from src.backend.common.config.app_config import config


def configure_logging(level: str | None = None) -> None:
    """Configure root logging for processes that host the record store."""

    level_name = (level or config.LOG_LEVEL or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s [%(levelname)s] [%(name)s] %(message)s",
    )

    # The discovery cache warns on every build() when oauth2client is absent.
    logging.getLogger("googleapiclient.discovery_cache").setLevel(logging.ERROR)
