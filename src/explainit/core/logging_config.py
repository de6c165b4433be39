"""
Logging configuration for explainit.

Console and application-file handlers are installed once per process by
``setup_logging``. Each running session additionally gets a debug log file in
its folder and a sink that republishes its records on the session event bus.
Session records are recognised by the ``session_id`` bound on the logger.
"""

import re
import sys
from pathlib import Path
from typing import Callable, Dict, Optional, TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    from explainit.config.config import LoggingConfig
    from explainit.workflow.events import EventBus


NOISY_LIBRARIES = ("litellm", "httpx", "httpcore", "openai")

SESSION_LOG_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
    "{level: <8} | "
    "{name}:{function}:{line} | "
    "{message}"
)


def format_record(record: Dict) -> str:
    """
    Clean console format: just the message, coloured by level.
    """
    message = record["message"]

    # loguru treats braces in a format function result as fields
    message = message.replace("{", "{{").replace("}", "}}")
    message = message.replace("<", r"\<")

    level = record["level"].name
    if level in ("TRACE", "DEBUG"):
        return f"<dim>{message}</dim>\n"

    prefix = ""
    if re.match(r"^(Starting|Resuming|Session)", message):
        prefix = "\n"

    if level in ("ERROR", "CRITICAL"):
        return f"{prefix}<red>{message}</red>\n{{exception}}"
    if level == "WARNING":
        return f"{prefix}<yellow>{message}</yellow>\n"
    if level == "SUCCESS":
        return f"{prefix}<green><bold>{message}</bold></green>\n"
    return f"{prefix}{message}\n"


def get_console_format(style: str = "clean"):
    """Get console format based on style preference."""
    if style == "timestamp":
        return "<dim>{time:HH:mm:ss}</dim> | <level>{message}</level>"
    if style == "detailed":
        return "<green>{time:HH:mm:ss}</green> | <level>{level: <7}</level> | <dim>{name}</dim> | <level>{message}</level>"
    return format_record


def setup_logging(config: 'LoggingConfig', console_filter: Optional[Callable] = None):
    """
    Set up console and file logging.

    Args:
        config: LoggingConfig instance
        console_filter: Optional filter function for console output
    """
    logger.remove()

    for library in NOISY_LIBRARIES:
        logger.disable(library)

    if config.enable_console:
        logger.add(
            sys.stderr,
            format=get_console_format(config.console_style),
            level=config.level,
            colorize=True,
            filter=console_filter,
            backtrace=True,
            diagnose=False,
        )

    if config.enable_file:
        log_path = config.get_log_file_path()
        log_path.parent.mkdir(parents=True, exist_ok=True)

        logger.add(
            str(log_path),
            format=SESSION_LOG_FORMAT,
            level=config.level,
            rotation=config.file_rotation,
            retention=config.file_retention,
            compression="zip",
            backtrace=True,
            diagnose=False,
            enqueue=True,
        )

    logger.debug(f"Logging configured: level={config.level}")


def session_filter(session_id: str) -> Callable[[Dict], bool]:
    """Filter that only lets through records bound to ``session_id``."""
    def filter_func(record):
        return record["extra"].get("session_id") == session_id
    return filter_func


def add_session_log_sink(session_id: str, folder: Path, level: str = "DEBUG") -> int:
    """
    Append every record of one session to ``<folder>/debug.log``.

    Returns:
        loguru handler id, to be passed to ``remove_sink`` when the run ends
    """
    folder = Path(folder)
    folder.mkdir(parents=True, exist_ok=True)
    return logger.add(
        str(folder / "debug.log"),
        format=SESSION_LOG_FORMAT,
        level=level,
        filter=session_filter(session_id),
        mode="a",
        encoding="utf-8",
        catch=True,
    )


def add_event_bus_sink(bus: 'EventBus', level: str = "INFO") -> int:
    """
    Republish the records of the bus's session under the ``log`` topic.

    Returns:
        loguru handler id
    """
    def sink(message):
        record = message.record
        bus.log(record["level"].name, record["message"], source=record["name"])

    return logger.add(
        sink,
        level=level,
        format="{message}",
        filter=session_filter(bus.session_id),
        catch=True,
    )


def remove_sink(handler_id: Optional[int]):
    if handler_id is None:
        return
    try:
        logger.remove(handler_id)
    except ValueError:
        # already removed, e.g. by a later setup_logging()
        pass

