import logging

from noble.config import Settings

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d - %(message)s"


def setup_logging(settings: Settings) -> None:
    """Configure root logging once at process start."""
    logging.basicConfig(level=settings.log_level.upper(), format=LOG_FORMAT)
    # The driver logs every routing table refresh at INFO.
    logging.getLogger("neo4j").setLevel(logging.WARNING)
