"""
Logging setup for invex

Library modules only create module-level loggers; applications (and the CLI)
call ``configure_logging`` once at start-up.
"""

import logging
from pathlib import Path
from typing import Optional

from invex.config.invex_config import InvexConfig

DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(config: Optional[InvexConfig] = None, level: Optional[str] = None) -> None:
    """Apply the configured level, format and optional log file

    Args:
        config: Configuration to read the ``logging`` section from
        level: Explicit level name overriding the configured one
    """
    config = config or InvexConfig()
    log_config = config.get_logging_config()

    level_name = (level or log_config.get('level') or 'INFO').upper()
    fmt = log_config.get('format') or DEFAULT_FORMAT

    handlers = [logging.StreamHandler()]
    log_file = log_config.get('file')
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=fmt,
        handlers=handlers,
        force=True
    )
