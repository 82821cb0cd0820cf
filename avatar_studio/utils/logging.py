"""
Logging utilities for Avatar Studio
"""

import logging
import sys
from pathlib import Path
from typing import Optional
from logging.handlers import RotatingFileHandler


def setup_logger(
    name: str = "avatar_studio",
    level: str = "INFO",
    log_file: Optional[str] = None,
    console: bool = True,
    file_logging: bool = False
) -> logging.Logger:
    """
    Setup and configure logger

    Args:
        name: Logger name
        level: Logging level
        log_file: Path to log file
        console: Enable console logging
        file_logging: Enable file logging

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper()))

    # Remove existing handlers
    logger.handlers.clear()

    detailed_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    simple_formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(getattr(logging, level.upper()))
        console_handler.setFormatter(simple_formatter)
        logger.addHandler(console_handler)

    if file_logging:
        if not log_file:
            log_dir = Path("./logs")
            log_dir.mkdir(parents=True, exist_ok=True)
            log_file = log_dir / f"{name}.log"
        else:
            log_file = Path(log_file)
            log_file.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding='utf-8'
        )
        file_handler.setLevel(logging.DEBUG)  # File gets all debug logs
        file_handler.setFormatter(detailed_formatter)
        logger.addHandler(file_handler)

    return logger


def configure_logging(settings) -> logging.Logger:
    """
    Configure the package root logger from settings

    Args:
        settings: Settings instance with ``logging`` and ``storage`` sections

    Returns:
        The configured ``avatar_studio`` logger
    """
    log_file = None
    if settings.logging.file_logging:
        log_file = str(Path(settings.get_logs_path()) / "avatar_studio.log")
    return setup_logger(
        "avatar_studio",
        level=settings.logging.level,
        log_file=log_file,
        file_logging=settings.logging.file_logging
    )


def get_logger(name: str) -> logging.Logger:
    """
    Get or create a logger instance

    Loggers inside the ``avatar_studio`` namespace propagate to the package
    root logger so a single ``configure_logging`` call controls them all.

    Args:
        name: Logger name

    Returns:
        Logger instance
    """
    logger = logging.getLogger(name)

    if name == "avatar_studio" or name.startswith("avatar_studio."):
        return logger

    # If logger has no handlers, set it up with defaults
    if not logger.handlers:
        setup_logger(name)
        # Prevent propagation to avoid duplicate logging
        logger.propagate = False

    return logger


class ComponentLogger:
    """
    Logger wrapper that adds component-specific prefixes to all log messages.

    Makes it obvious which ledger, wizard session or store produced a line
    when several views of the same profile are active at once.
    """

    def __init__(self, component_type: str, instance_id: Optional[str] = None, base_logger: Optional[logging.Logger] = None):
        """
        Initialize component logger with automatic prefixing.

        Args:
            component_type: Short identifier for component type (e.g., 'Ledger', 'Wizard')
            instance_id: Optional instance identifier (e.g., profile_id, session id)
            base_logger: Base logger to wrap (if None, creates default logger)
        """
        self.component_type = component_type
        self.instance_id = instance_id

        if instance_id:
            self.prefix = f"[{component_type}:{instance_id}]"
        else:
            self.prefix = f"[{component_type}]"

        if base_logger:
            self.logger = base_logger
        else:
            self.logger = get_logger(f"avatar_studio.component.{component_type.lower()}")

    def _format_message(self, message: str) -> str:
        """Add component prefix to message."""
        return f"{self.prefix} {message}"

    def debug(self, message: str, *args, **kwargs):
        self.logger.debug(self._format_message(message), *args, **kwargs)

    def info(self, message: str, *args, **kwargs):
        self.logger.info(self._format_message(message), *args, **kwargs)

    def warning(self, message: str, *args, **kwargs):
        self.logger.warning(self._format_message(message), *args, **kwargs)

    def error(self, message: str, *args, **kwargs):
        self.logger.error(self._format_message(message), *args, **kwargs)

    def exception(self, message: str, *args, **kwargs):
        """Log exception with component prefix."""
        self.logger.exception(self._format_message(message), *args, **kwargs)

    def isEnabledFor(self, level):
        return self.logger.isEnabledFor(level)

    def get_base_logger(self) -> logging.Logger:
        """Get the underlying base logger."""
        return self.logger


def get_component_logger(component_type: str, instance_id: Optional[str] = None) -> ComponentLogger:
    """
    Create a component-specific logger with automatic prefixing.

    Args:
        component_type: Short identifier for component type
        instance_id: Optional instance identifier

    Returns:
        ComponentLogger instance with prefixed logging

    Examples:
        logger = get_component_logger("Attachments")
        logger.info("Stored object")  # -> [Attachments] Stored object

        logger = get_component_logger("Ledger", "3f2a9c")
        logger.info("Refreshed rows")  # -> [Ledger:3f2a9c] Refreshed rows
    """
    return ComponentLogger(component_type, instance_id)
