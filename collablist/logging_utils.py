import logging
import sys

# Chatty third-party loggers kept at WARNING unless LOG_LEVEL is DEBUG
_NOISY = ("sqlalchemy.engine", "urllib3", "httpx", "multipart")


def setup_logging(level: str = "INFO") -> None:
    """Configure one stdout handler for the service.

    Format: time level logger message k=v ...
    """
    level = level.upper()
    root = logging.getLogger()
    for name in _NOISY:
        logging.getLogger(name).setLevel(logging.DEBUG if level == "DEBUG" else logging.WARNING)

    if root.handlers:
        # Respect existing (e.g., uvicorn, pytest) but align level
        root.setLevel(level)
        return

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(
        logging.Formatter(fmt="%(asctime)s %(levelname)s %(name)s %(message)s", datefmt="%Y-%m-%dT%H:%M:%S")
    )
    root.addHandler(handler)
    root.setLevel(level)


def request_logger() -> logging.Logger:
    return logging.getLogger("collablist.request")
