"""
Logging configuration for vdisk entrypoints.

Library modules only call logging.getLogger(__name__); handlers and levels
are installed here, once, by whatever process embeds the package.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(
    component_name: str,
    level: Union[int, str] = logging.INFO,
    log_file: Optional[str] = None,
    format_string: Optional[str] = None,
) -> logging.Logger:
    """
    Configure the root logger and return the component logger.

    Args:
        component_name: Component identifier (e.g. 'vdisk', 'bootstrap').
        level: Logging level, as a number or a name such as "DEBUG".
        log_file: Optional file path for log output.
        format_string: Custom format string (default provided).
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            raise ValueError(f"Unknown log level: {level}")

    if format_string is None:
        format_string = f"[%(asctime)s] [{component_name.upper()}] %(levelname)s - %(message)s"

    logging.basicConfig(
        level=level,
        format=format_string,
        datefmt=DATE_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(format_string, datefmt=DATE_FORMAT))
        logging.getLogger().addHandler(file_handler)

    logger = logging.getLogger(component_name)
    logger.debug("%s logging initialized (level=%s)", component_name, logging.getLevelName(level))
    return logger
