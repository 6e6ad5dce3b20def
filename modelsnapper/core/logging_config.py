import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional

from modelsnapper.core.config import settings

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def resolve_level(level: Optional[str] = None) -> int:
    """Explicit level, else DEBUG when settings.DEBUG is on, else settings.LOG_LEVEL"""
    name = (level or ("DEBUG" if settings.DEBUG else settings.LOG_LEVEL) or "INFO").upper()
    numeric = logging.getLevelName(name)
    return numeric if isinstance(numeric, int) else logging.INFO


def build_handlers() -> List[logging.Handler]:
    # Containers log to stdout; the rotating file is opt-in through LOG_FILE
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if settings.LOG_FILE:
        log_path = Path(settings.LOG_FILE)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(
            log_path,
            maxBytes=10*1024*1024,  # 10MB
            backupCount=5,
            delay=True
        ))
    for handler in handlers:
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handlers


def setup_logging(level: Optional[str] = None):
    """Configure logging for the application"""
    numeric_level = resolve_level(level)

    # Leave an already configured root logger alone (uvicorn --log-config, pytest)
    if not logging.getLogger().handlers:
        logging.basicConfig(level=numeric_level, format=LOG_FORMAT, handlers=build_handlers())

    # Third party noise
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("stripe").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("uvicorn").setLevel(logging.INFO)

    logging.getLogger("modelsnapper").setLevel(numeric_level)
