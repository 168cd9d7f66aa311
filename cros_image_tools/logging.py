from __future__ import annotations

import os
import sys
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from loguru import Logger

from loguru import logger

DEFAULT_LOG_DIR = Path(
    os.environ.get(
        "CROS_IMAGE_TOOLS_LOG_DIR",
        Path.home() / ".local" / "state" / "cros-image-tools" / "logs",
    )
)


def _should_log_progress(record) -> bool:
    """Filter per-chunk progress logs - only show in TRACE mode."""
    tags = record["extra"].get("tags", [])

    if record["level"].no >= logger.level("WARNING").no:
        return True

    if "progress" in tags:
        return record["level"].no <= logger.level("TRACE").no

    return True


def _should_log_cleanup(record) -> bool:
    """Filter routine cleanup chatter below DEBUG."""
    message = record["message"].lower()
    tags = record["extra"].get("tags", [])

    if "temp" in tags and message.startswith("registered"):
        return record["level"].no <= logger.level("DEBUG").no

    return True


def _combined_filter(record) -> bool:
    """Combined filter for all log suppression rules."""
    return _should_log_progress(record) and _should_log_cleanup(record)


def setup_logging(
    *,
    debug: bool = False,
    trace: bool = False,
    log_dir: Path | None = None,
) -> Logger:
    """
    Setup logging with separate sinks for different log levels.

    Log Files:
    - operations.log: INFO+ events (7 day retention)
    - debug.log: DEBUG+ events when --debug is enabled (3 day retention)
    - structured.jsonl: Structured JSON logs for analysis (7 day retention)

    Args:
        debug: Enable DEBUG level logging (command lines, tool probing)
        trace: Enable TRACE level logging (progress chatter)
        log_dir: Custom log directory (defaults to ~/.local/state/cros-image-tools/logs)
    """
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "APP"})

    if trace:
        console_level = "TRACE"
    elif debug:
        console_level = "DEBUG"
    else:
        console_level = "INFO"

    # SINK 1: Console (stderr)
    logger.add(
        sys.stderr,
        level=console_level,
        backtrace=False,
        diagnose=False,
        filter=_combined_filter,
        colorize=True,
        format=(
            "<green>{time:HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{extra[source]: <10}</cyan> | "
            "{message}"
        ),
    )

    log_dir = log_dir or DEFAULT_LOG_DIR
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except OSError as error:
        logger.warning(f"Log directory {log_dir} unavailable: {error}")
        return logger

    # SINK 2: Operations Log - Important events only (INFO+)
    logger.add(
        log_dir / "operations.log",
        level="INFO",
        rotation="5 MB",
        retention="7 days",
        compression="zip",
        backtrace=False,
        diagnose=False,
        format=(
            "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
            "{level: <8} | "
            "{extra[source]: <10} | "
            "{extra[job_id]: <15} | "
            "{message}"
        ),
    )

    # SINK 3: Debug Log - Detailed diagnostics (DEBUG+ when debug=True)
    if debug or trace:
        logger.add(
            log_dir / "debug.log",
            level="TRACE" if trace else "DEBUG",
            rotation="10 MB",
            retention="3 days",
            compression="zip",
            backtrace=True,
            diagnose=True,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{level: <8} | "
                "{extra[source]: <10} | "
                "{extra[job_id]: <15} | "
                "{extra[tags]} | "
                "{message}"
            ),
        )

    # SINK 4: Structured JSON Log - For analysis tools (INFO+)
    logger.add(
        log_dir / "structured.jsonl",
        level="INFO",
        rotation="10 MB",
        retention="7 days",
        compression="zip",
        serialize=True,
        format="{message}",
    )

    return logger


def get_logger(
    *,
    job_id: str | None = None,
    tags: Iterable[str] | None = None,
    source: str | None = None,
) -> Logger:
    """
    Get a logger with bound context.

    Args:
        job_id: Job identifier for tracking operations
        tags: Tags for filtering (e.g., ["copy", "partition"])
        source: Source component (e.g., "copy", "kernel")

    Returns:
        Logger with bound context
    """
    extras: dict[str, object] = {}
    if job_id is not None:
        extras["job_id"] = job_id
    if tags is not None:
        extras["tags"] = list(tags)
    if source is not None:
        extras["source"] = source
    return logger.bind(**extras)


@contextmanager
def operation_context(operation: str, **details):
    """
    Context manager for tracking long-running operations with automatic timing.

    Logs operation start, completion, and failure with duration tracking.

    Example:
        with operation_context("copy", source="a.bin", target="b.bin") as log:
            log.debug("Resolving partitions")
    """
    job_id = f"{operation}-{uuid.uuid4().hex[:8]}"

    with logger.contextualize(job_id=job_id, operation=operation, **details):
        start_time = time.time()
        log = logger.bind(source=operation, job_id=job_id, tags=[operation])

        log.info(f"{operation.capitalize()} started")

        try:
            yield log
            duration = time.time() - start_time
            log.success(
                f"{operation.capitalize()} completed in {duration:.2f}s"
            )
        except Exception as e:
            duration = time.time() - start_time
            log.error(
                f"{operation.capitalize()} failed after {duration:.2f}s "
                f"({type(e).__name__}): {e}"
            )
            raise


class LoggerFactory:
    """
    Factory for creating domain-specific loggers with automatic context.
    """

    @staticmethod
    def for_locator() -> Logger:
        """Logger for partition table lookups."""
        return logger.bind(source="locator", tags=["partition", "locator"])

    @staticmethod
    def for_extent() -> Logger:
        """Logger for raw extent reads."""
        return logger.bind(source="extent", tags=["extent", "io"])

    @staticmethod
    def for_partition() -> Logger:
        """Logger for partition dump, map and mount operations."""
        return logger.bind(source="partition", tags=["partition", "mount"])

    @staticmethod
    def for_copy(job_id: str | None = None) -> Logger:
        """Logger for partition copy operations."""
        if job_id is None:
            job_id = f"copy-{uuid.uuid4().hex[:8]}"
        return logger.bind(job_id=job_id, source="copy", tags=["copy", "io"])

    @staticmethod
    def for_kernel() -> Logger:
        """Logger for kernel key block inspection."""
        return logger.bind(source="kernel", tags=["kernel"])

    @staticmethod
    def for_temp() -> Logger:
        """Logger for temporary resource tracking."""
        return logger.bind(source="temp", tags=["temp", "cleanup"])

    @staticmethod
    def for_progress() -> Logger:
        """Logger for progress updates (TRACE only on the console)."""
        return logger.bind(source="progress", tags=["progress"])

    @staticmethod
    def for_system() -> Logger:
        """Logger for system operations (startup, tool probing, config)."""
        return logger.bind(source="system", tags=["system"])


class ThrottledLogger:
    """
    Logger wrapper that throttles high-frequency log events.

    Used for progress updates that should only be emitted at intervals.
    """

    def __init__(self, log: Logger, interval_seconds: float = 5.0):
        self.log = log
        self.interval = interval_seconds
        self.last_log_time: dict[str, float] = {}

    def debug(self, key: str, message: str, **kwargs) -> None:
        """Log at DEBUG level, throttled by key."""
        self._throttled_log("DEBUG", key, message, **kwargs)

    def trace(self, key: str, message: str, **kwargs) -> None:
        """Log at TRACE level, throttled by key."""
        self._throttled_log("TRACE", key, message, **kwargs)

    def _throttled_log(self, level: str, key: str, message: str, **kwargs) -> None:
        now = time.time()
        last_time = self.last_log_time.get(key, 0)

        if now - last_time >= self.interval:
            log_method = getattr(self.log, level.lower())
            log_method(message, **kwargs)
            self.last_log_time[key] = now
