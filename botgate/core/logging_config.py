"""
Logging Configuration Module.

Centralized logging configuration for botgate: one console handler, an
optional file handler, and per-module log levels.

Environment:
- ``BOTGATE_LOG_LEVEL``: console level (default INFO)
- ``LOG_FORMAT``: ``simple``, ``detailed`` (default) or ``json``
- ``LOG_FILE_DIR``: directory for ``botgate.log`` (default ``logs``)
- ``ENABLE_FILE_LOGGING``: ``true`` to also log to file (default false)
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional


def _get_logging_config() -> Dict[str, Any]:
    """Read logging options from the environment.

    The server's ``Settings`` object reads the same variables; reading them
    here keeps the agent core importable without the server package.
    """
    return {
        "log_level": os.getenv("BOTGATE_LOG_LEVEL", "INFO").upper(),
        "log_format": os.getenv("LOG_FORMAT", "detailed"),
        "log_file_dir": os.getenv("LOG_FILE_DIR", "logs"),
        "enable_file_logging": os.getenv("ENABLE_FILE_LOGGING", "false").lower() in ("true", "1", "yes"),
    }


_config = _get_logging_config()
LOG_LEVEL = _config["log_level"]
LOG_FORMAT = _config["log_format"]
LOG_FILE_DIR = _config["log_file_dir"]
ENABLE_FILE_LOGGING = _config["enable_file_logging"]


SIMPLE_FORMAT = "%(levelname)s - %(name)s - %(message)s"

DETAILED_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(funcName)s() - %(message)s"

JSON_FORMAT = (
    '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", '
    '"module": "%(filename)s", "function": "%(funcName)s", "line": %(lineno)d, '
    '"message": "%(message)s"}'
)

_FORMATS = {
    "simple": SIMPLE_FORMAT,
    "detailed": DETAILED_FORMAT,
    "json": JSON_FORMAT,
}


MODULE_LOG_LEVELS = {
    # Core modules
    "botgate.agent_core": "DEBUG",
    "botgate.agent_core.policy": "DEBUG",
    "botgate.agent_core.audit": "INFO",
    "botgate.agent_core.planning": "DEBUG",
    "botgate.agent_core.runtime": "DEBUG",
    "botgate.agent_core.repos": "INFO",
    "botgate.agent_core.service": "DEBUG",
    # Server modules
    "botgate.server": "INFO",
    "botgate.server.api": "DEBUG",
    "botgate.server.services": "DEBUG",
    "botgate.server.core": "INFO",
    # Third-party libraries (reduce noise)
    "sqlalchemy": "WARNING",
    "sqlalchemy.engine": "WARNING",
    "sqlalchemy.pool": "WARNING",
    "aiosqlite": "WARNING",
    "httpx": "WARNING",
    "asyncio": "WARNING",
    "uvicorn": "INFO",
    "uvicorn.access": "INFO",
}


def format_for(name: str) -> str:
    """Return the format string for ``name``, falling back to the detailed format."""
    return _FORMATS.get(name, DETAILED_FORMAT)


def setup_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    enable_file: bool = True,
) -> None:
    """
    Configure logging for the application.

    Args:
        log_level: Override default log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Override default format (simple, detailed, json)
        enable_file: Whether to enable file logging (only if ENABLE_FILE_LOGGING is set)
    """
    level = (log_level or LOG_LEVEL).upper()
    fmt = log_format or LOG_FORMAT

    formatter = logging.Formatter(format_for(fmt), datefmt="%Y-%m-%d %H:%M:%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # filter at handler level

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    file_logging = enable_file and ENABLE_FILE_LOGGING
    if file_logging:
        Path(LOG_FILE_DIR).mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(Path(LOG_FILE_DIR) / "botgate.log")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    for module_name, module_level in MODULE_LOG_LEVELS.items():
        logging.getLogger(module_name).setLevel(module_level)

    root_logger.info(f"Logging configured: level={level}, format={fmt}, file_logging={file_logging}")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Args:
        name: The module name (typically __name__)

    Returns:
        A configured logger instance
    """
    return logging.getLogger(name)


# Configure logging on module import
setup_logging()
