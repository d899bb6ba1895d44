import json
import logging
import logging.config
from pathlib import Path

from app.core.config import settings
from app.infrastructure.logging.json_formatter import JsonLogFormatter


def configure_logging(config_path: Path | None = None) -> None:
    if config_path is not None and config_path.exists():
        logging.config.dictConfig(json.loads(config_path.read_text(encoding="utf-8")))
        return

    level = settings.log_level.upper()
    if settings.log_format == "json":
        handler = logging.StreamHandler()
        handler.setFormatter(JsonLogFormatter())
        logging.basicConfig(level=level, handlers=[handler], force=True)
    else:
        logging.basicConfig(level=level)
