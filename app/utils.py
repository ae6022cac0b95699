import logging
import sys

from app.core import config

_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
_configured = False


def _configure_root() -> None:
    global _configured
    if _configured:
        return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    root = logging.getLogger("app")
    root.addHandler(handler)
    root.setLevel(config.LOG_LEVEL)
    root.propagate = False
    # SQLAlchemy echo is controlled per engine; keep the pool quiet
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the ``app`` hierarchy, configuring it on first use."""
    _configure_root()
    if name == "__main__" or not name.startswith("app"):
        name = f"app.{name}"
    return logging.getLogger(name)
