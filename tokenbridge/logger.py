"""
tokenbridge Logging System
==========================

A unified, thread-safe logging utility for the bridge. This module integrates
with the standard Python `logging` library and the `rich` library so that
state transitions, transaction handles and ledger errors stand out on the
console while a rotating UTC file log keeps the audit trail.

Usage:
    >>> from tokenbridge.logger import get_logger
    >>> logger = get_logger(__name__)
    >>> logger.info("[bridge] 3f2c... VALIDATED -> SOURCE_SUBMITTED")
"""

import logging
import logging.handlers
import re
import sys
import threading
import time
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.highlighter import RegexHighlighter
from rich.logging import RichHandler
from rich.theme import Theme

from .constants import (
    LOG_LEVEL,
    LOG_FORMAT,
    LOG_DATE_FORMAT,
    LOG_MAX_FILE_SIZE,
    LOG_BACKUP_COUNT,
    LOG_CONSOLE_HIGHLIGHTING,
)


PROJECT_ROOT = Path(__file__).parent.parent
LOG_FILE_PATH = PROJECT_ROOT / "logs" / "tokenbridge.log"

# Library loggers that flood INFO with per-request chatter
_NOISY_LIBRARIES = ("httpx", "httpcore", "aiosqlite", "asyncio")


class LogManager:
    """
    Manages logging configuration via the Singleton pattern.

    Ensures the logging subsystem is initialized exactly once, whether the
    first caller is the CLI, a test, or an embedding service.

    Attributes:
        _instance (LogManager): The singleton instance.
        _lock (threading.Lock): Thread lock for atomic initialization.
    """

    _instance: Optional["LogManager"] = None
    _lock: threading.Lock = threading.Lock()

    def __new__(cls) -> "LogManager":
        """Creates or returns the existing singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self) -> None:
        if self._initialized:
            return
        self._configured = False
        self._initialized = True

    @staticmethod
    def validate_log_format(log_format: str) -> str:
        """
        Validates the syntax of a logging format string.

        Formats a dummy record to catch runtime errors as well as malformed
        specifiers.

        Args:
            log_format (str): The logging format string.

        Returns:
            str: The validated format string, or the default `LOG_FORMAT` on failure.
        """
        try:
            if not log_format:
                return str(LOG_FORMAT.default())

            log_format = str(log_format)

            format_specifier_pattern = r"\([a-zA-Z_][a-zA-Z0-9_]*\)[a-zA-Z]"
            for match in re.finditer(format_specifier_pattern, log_format):
                start_pos = match.start()
                if start_pos == 0 or log_format[start_pos - 1] != "%":
                    raise ValueError("Malformed format specifier.")

            formatter = logging.Formatter(fmt=log_format)
            record = logging.LogRecord(
                name="test", level=logging.INFO, pathname="", lineno=0,
                msg="test", args=(), exc_info=None,
            )
            formatted_output = formatter.format(record)

            if re.search(format_specifier_pattern, formatted_output):
                raise ValueError("Format specifiers not properly processed.")

            return log_format
        except (ValueError, KeyError, TypeError) as e:
            print(
                f"{time.strftime('%Y-%m-%d %H:%M:%S')} - tokenbridge.logger - "
                f"Validation Error: {e}. Using default.",
                file=sys.stderr,
            )
            return str(LOG_FORMAT.default())

    @staticmethod
    def validate_date_format(date_format: str) -> str:
        """
        Validates a date format string against standard strftime directives.

        Args:
            date_format (str): The date format string (e.g., "%Y-%m-%d").

        Returns:
            str: The validated date format string, or default if validation fails.
        """
        if not date_format:
            return str(LOG_DATE_FORMAT.default())

        date_format = str(date_format)

        date_format_pattern = re.compile(
            rf"^(?=.*%(?!%)(?:[EO])?(?:[-_0^#])*(?:[A-DF-HIM-NPR-VW-Za-hj-lm-npr-uw-z]))"
            rf"(?:%%|%(?:[EO])?(?:[-_0^#])*(?:[A-DF-HIM-NPR-VW-Za-hj-lm-npr-uw-z])|[0-9 \t:\-\/\.,TZ+])+$"
        )

        if not date_format_pattern.match(date_format):
            print(
                f"{time.strftime(str(LOG_DATE_FORMAT.default()))} - tokenbridge.logger - "
                f"Invalid date format. Using default.",
                file=sys.stderr,
            )
            return str(LOG_DATE_FORMAT.default())

        return date_format

    def configure(
        self,
        log_level: Optional[str] = None,
        log_file: Optional[Path] = None,
        console_output: bool = True,
        file_output: bool = True,
        force: bool = False,
    ) -> None:
        """
        Configures the root logger with console and file handlers.

        Args:
            log_level (Optional[str]): Logging level (DEBUG, INFO, etc.). Defaults to .env value.
            log_file (Optional[Path]): Path to log file. Defaults to `logs/tokenbridge.log`.
            console_output (bool): Enable console logging. Defaults to True.
            file_output (bool): Enable rotating file logging. Defaults to True.
            force (bool): Re-apply configuration even if already configured
                (used when the loaded config file overrides the .env level).
        """
        with self._lock:
            if self._configured and not force:
                return

            level_str = log_level or LOG_LEVEL
            numeric_level = getattr(logging, str(level_str).upper(), logging.INFO)

            root_logger = logging.getLogger()
            root_logger.setLevel(numeric_level)

            for lib in _NOISY_LIBRARIES:
                logging.getLogger(lib).setLevel(logging.WARNING)

            root_logger.handlers.clear()

            log_format = self.validate_log_format(LOG_FORMAT)
            date_format = self.validate_date_format(LOG_DATE_FORMAT)

            # UTC keeps operator timelines comparable with ledger timestamps
            formatter = TerminalSafeFormatter(fmt=log_format, datefmt=date_format + " UTC")
            formatter.converter = time.gmtime

            if console_output:
                if LOG_CONSOLE_HIGHLIGHTING:
                    bridge_theme = Theme(
                        {
                            "bridge.arrow":            "bold yellow",
                            "bridge.level_critical":   "bold red reverse",
                            "bridge.level_debug":      "bold dim",
                            "bridge.level_error":      "bold red",
                            "bridge.level_info":       "bold green",
                            "bridge.level_warning":    "bold yellow",
                            "bridge.logger_name":      "magenta",
                            "bridge.network_error":    "bold red",
                            "bridge.state_ok":         "bold green",
                            "bridge.state_failed":     "bold red",
                            "bridge.state_reconcile":  "bold red reverse",
                            "bridge.state_progress":   "bold cyan",
                            "bridge.tx_handle":        "cyan",
                            "bridge.tag":              "bold magenta",
                            "bridge.timestamp":        "bold cyan",
                            "bridge.url":              "cyan",
                        }
                    )

                    console = Console(theme=bridge_theme, highlight=False, stderr=True)

                    rich_handler = RichHandler(
                        console=console,
                        highlighter=BridgeLogHighlighter(),
                        keywords=[],
                        rich_tracebacks=True,
                        omit_repeated_times=False,
                        show_path=False,
                        show_time=False,
                        show_level=False,
                        markup=False,
                    )
                    rich_handler.setLevel(numeric_level)
                    rich_handler.setFormatter(formatter)
                    root_logger.addHandler(rich_handler)
                else:
                    console_handler = logging.StreamHandler(sys.stderr)
                    console_handler.setLevel(numeric_level)
                    console_handler.setFormatter(formatter)
                    root_logger.addHandler(console_handler)

            if file_output:
                log_file_path = Path(log_file) if log_file else LOG_FILE_PATH
                log_file_path.parent.mkdir(parents=True, exist_ok=True)

                file_handler = logging.handlers.RotatingFileHandler(
                    filename=str(log_file_path),
                    maxBytes=LOG_MAX_FILE_SIZE,
                    backupCount=LOG_BACKUP_COUNT,
                    encoding="utf-8",
                )
                file_handler.setLevel(numeric_level)
                file_handler.setFormatter(formatter)
                root_logger.addHandler(file_handler)

            self._configured = True

    def get_logger(self, name: str) -> logging.Logger:
        """
        Retrieves a logger for a specific module, configuring on first use.

        Args:
            name (str): The name of the logger (typically `__name__`).

        Returns:
            logging.Logger: A standard Python logger.
        """
        if not self._configured:
            self.configure()
        return logging.getLogger(name)

    @property
    def is_configured(self) -> bool:
        """Returns True if the logging system has been configured."""
        return self._configured


class TerminalSafeFormatter(logging.Formatter):
    """
    A formatter that sanitizes log output.

    Account references and ledger error strings are caller- or
    ledger-supplied text; ANSI escape sequences and control characters are
    stripped so they cannot forge log lines or manipulate the terminal
    (CWE-117).
    """

    _ansi_escape_re = re.compile(
        r"\x1b\[[0-?]*[ -/]*[@-~]"
        r"|\x1b[@-Z\\-_]"
    )
    # Control chars (0x00-0x1F) excluding Tab and Newline
    _control_chars_re = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
    _carriage_return_re = re.compile(r"\r")

    @classmethod
    def sanitize(cls, text: str) -> str:
        """
        Removes potentially dangerous characters from the provided text.

        Args:
            text (str): The raw log message.

        Returns:
            str: The sanitized message safe for terminal output.
        """
        if not text:
            return text
        text = cls._ansi_escape_re.sub("", text)
        text = cls._carriage_return_re.sub("", text)
        text = cls._control_chars_re.sub("", text)
        return text

    def format(self, record: logging.LogRecord) -> str:
        return self.sanitize(super().format(record))


class BridgeLogHighlighter(RegexHighlighter):
    """
    Rich highlighter for bridge logs.

    Colours the orchestrator's state names by severity so that a
    FAILED_AFTER_SOURCE_CONFIRMED line is impossible to miss in a busy
    console, and marks transaction handles and RPC traffic arrows.
    """

    base_style = "bridge."
    highlights = [
        r"(?P<arrow>(\-\->)|(<\-\-)|(\s\->\s))",
        r"(?P<level_critical>\bCRITICAL\b)",
        r"(?P<level_debug>\bDEBUG\b)",
        r"(?P<level_error>\bERROR\b)",
        r"(?P<level_info>\bINFO\b)",
        r"(?P<level_warning>\bWARNING\b)",
        r"\-\s+\w+\s+-\s+(?P<logger_name>[\w.]+)(?=\s-\s)",
        r"(?P<network_error>NETWORK_ERROR)",
        r"(?P<state_ok>\bCOMPLETED\b)",
        r"(?P<state_progress>\b(VALIDATED|SOURCE_SUBMITTED|SOURCE_CONFIRMED|DESTINATION_SUBMITTED)\b)",
        r"(?P<state_failed>\b(FAILED_VALIDATION|FAILED_SOURCE)\b)",
        r"(?P<state_reconcile>\b(FAILED_AFTER_SOURCE_CONFIRMED|TIMED_OUT)\b)",
        r"(?P<tx_handle>\b0x[0-9a-fA-F]{40,64}\b)",
        r"(?P<tag>\[.*?\])",
        r"(?P<timestamp>^(.*?)UTC)",
        r"(?P<url>https?://\S+)",
    ]


_manager = LogManager()


def configure_logging(
    log_level: Optional[str] = None,
    log_file: Optional[Path] = None,
    console_output: bool = True,
    file_output: bool = True,
) -> None:
    """Re-applies logging configuration, e.g. after the TOML config is loaded."""
    _manager.configure(
        log_level=log_level,
        log_file=log_file,
        console_output=console_output,
        file_output=file_output,
        force=True,
    )


def get_logger(name: str) -> logging.Logger:
    """
    Public accessor of the logging system.
    Delegates to the Singleton LogManager, ensuring configuration is applied.

    Args:
        name (str): The name of the module requesting the logger.

    Returns:
        logging.Logger: The configured logger instance.
    """
    return _manager.get_logger(name)
