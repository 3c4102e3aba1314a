"""
Console Logging for the EduPal Backend

- Color-coded levels (only when stdout is a terminal)
- Icons picked from the `[Component]` tag at the start of a message
- StructuredLogger: key/value payloads, section banners, view transitions
"""

import logging
import os
import sys
from datetime import datetime
from typing import Any, Dict, Optional, Union


class Colors:
    """ANSI color codes for terminal output."""
    RESET = '\033[0m'
    BOLD = '\033[1m'

    DEBUG = '\033[36m'      # Cyan
    INFO = '\033[32m'       # Green
    WARNING = '\033[33m'    # Yellow
    ERROR = '\033[31m'      # Red
    CRITICAL = '\033[35m'   # Magenta

    SECTION = '\033[94m'    # Bright Blue
    KEY = '\033[93m'        # Bright Yellow
    TIMESTAMP = '\033[90m'  # Dark Gray


LEVEL_COLORS = {
    'DEBUG': Colors.DEBUG,
    'INFO': Colors.INFO,
    'WARNING': Colors.WARNING,
    'ERROR': Colors.ERROR,
    'CRITICAL': Colors.CRITICAL,
}

LEVEL_ICONS = {
    'DEBUG': '🔍',
    'INFO': 'ℹ️',
    'WARNING': '⚠️',
    'ERROR': '❌',
    'CRITICAL': '🚨',
}

# Keyed by the tag a message starts with, e.g. "[LearningGateway] ..."
COMPONENT_ICONS = {
    'LearningGateway': '🤖',
    'SessionManager': '💾',
    'JsonFileStore': '💾',
    'Supabase': '💾',
    'SessionMachine': '🔀',
    'TutorApp': '🎓',
    'API': '📥',
}

NOISY_LOGGERS = ('asyncio', 'httpx', 'httpcore', 'openai', 'urllib3')


def _component(message: str) -> Optional[str]:
    start = message.find('[')
    end = message.find(']', start + 1)
    if start == -1 or end == -1 or start > 4:
        return None
    return message[start + 1:end]


class ColoredFormatter(logging.Formatter):
    """`[HH:MM:SS.mmm] icon LEVEL logger | message` lines."""

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def icon_for(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        # Messages that already carry an emoji keep it
        if message[:1] and not message[:1].isascii():
            return ''
        component = _component(message)
        if component in COMPONENT_ICONS:
            return COMPONENT_ICONS[component]
        return LEVEL_ICONS.get(record.levelname, '•')

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S.%f')[:-3]
        if self.use_colors:
            level_color = LEVEL_COLORS.get(record.levelname, Colors.RESET)
            reset, bold, dim = Colors.RESET, Colors.BOLD, Colors.TIMESTAMP
        else:
            level_color = reset = bold = dim = ''

        icon = self.icon_for(record)
        prefix = f"{icon} " if icon else ""
        formatted = (
            f"{dim}[{timestamp}]{reset} "
            f"{prefix}{level_color}{record.levelname:8s}{reset} "
            f"{bold}{record.name}{reset} | {record.getMessage()}"
        )
        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"
        return formatted


class StructuredLogger:
    """Logger wrapper that appends key/value payloads to messages."""

    def __init__(self, name: str, logger: Optional[logging.Logger] = None):
        self.name = name
        self.logger = logger or logging.getLogger(name)

    @staticmethod
    def format_data(data: Dict[str, Any], indent: int = 2) -> str:
        lines = []
        for key, value in data.items():
            if isinstance(value, dict):
                lines.append(f"{' ' * indent}{key}:")
                lines.append(StructuredLogger.format_data(value, indent + 2))
            elif isinstance(value, (list, tuple)) and len(value) > 5:
                shown = ", ".join(str(v) for v in value[:3])
                lines.append(f"{' ' * indent}{key}: [{shown}, ... ({len(value)} items)]")
            else:
                lines.append(f"{' ' * indent}{key}: {value}")
        return "\n".join(lines)

    def _with_data(self, message: str, data: Optional[Dict[str, Any]]) -> str:
        if not data:
            return message
        return f"{message}\n{self.format_data(data)}"

    def debug(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.debug(self._with_data(message, data))

    def info(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.info(self._with_data(message, data))

    def warning(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.warning(self._with_data(message, data))

    def error(self, message: str, error: Optional[Exception] = None, data: Optional[Dict[str, Any]] = None):
        """Log an error; the exception's traceback is attached when given."""
        if error is not None:
            message = f"{message} Error: {type(error).__name__}: {error}"
        self.logger.error(self._with_data(message, data), exc_info=error)

    def success(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.info(self._with_data(f"✅ {message}", data))

    def section(self, title: str, data: Optional[Dict[str, Any]] = None):
        """Log a banner, e.g. at startup."""
        separator = "=" * 60
        self.logger.info(self._with_data(f"\n{separator}\n📋 {title.upper()}\n{separator}", data))

    def transition(self, event: str, before: str, after: str):
        """Log a view change caused by an event; unchanged views log at DEBUG."""
        if before == after:
            self.logger.debug(f"[API] {event}: stayed on {before}")
        else:
            self.logger.info(f"[API] {event}: {before} -> {after}")


def parse_level(level: Union[int, str, None]) -> int:
    """Accept logging constants or names like "debug"; unknown names mean INFO."""
    if isinstance(level, int):
        return level
    if not level:
        return logging.INFO
    value = logging.getLevelName(str(level).upper())
    return value if isinstance(value, int) else logging.INFO


def setup_logging(level: Union[int, str, None] = None, use_colors: bool = True) -> logging.Logger:
    """
    Install the colored console handler on the root logger.

    `level` defaults to the LOG_LEVEL environment variable.
    """
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    level = parse_level(level)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(ColoredFormatter(use_colors=use_colors))

    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance."""
    return StructuredLogger(name, logging.getLogger(name))
