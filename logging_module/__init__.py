"""Logging setup for the print streamer.

Main Components:
    - LoggingConfig: Configuration loaded from the environment
    - JsonFormatter: One JSON object per log record
    - setup_logging: Installs console and rotating JSON file handlers

Example:
    >>> from logging_module import LoggingConfig, setup_logging
    >>> setup_logging(LoggingConfig.from_env())
"""

from logging_module.config import LoggingConfig
from logging_module.logger import JsonFormatter, setup_logging

__version__ = "1.0.0"
__all__ = ["LoggingConfig", "JsonFormatter", "setup_logging"]
