import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    # statement echo is only useful when debugging queries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
