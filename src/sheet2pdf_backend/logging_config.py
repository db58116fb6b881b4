import logging
from logging.config import dictConfig


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Install the console handler for the service and return its logger."""
    level = level.upper()
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "standard": {"format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"},
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "standard",
                    "level": level,
                },
            },
            "loggers": {
                "sheet2pdf_backend": {
                    "handlers": ["console"],
                    "level": level,
                    "propagate": False,
                },
            },
        }
    )
    logger = logging.getLogger("sheet2pdf_backend")
    logger.debug("Logging configured.")
    return logger
