"""droidscript structured logging system."""

from __future__ import annotations

import os
import sys
from typing import Any

from loguru import logger

from .config import config


class Logger:
    """Structured logging system for the droidscript engine."""

    def __init__(self, name: str = "droidscript", *, configure: bool = True) -> None:
        """Initialize and configure a *Loguru* logger instance."""
        self.name = name
        if configure:
            self._setup_logger()

    def _setup_logger(self) -> None:
        """Configure the logger with proper formatting and handlers."""
        # Remove default handler
        logger.remove()

        # ------------------------------------------------------------------
        # Console handler
        # ------------------------------------------------------------------
        console_format = (
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level:<8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        )

        logger.add(
            sys.stderr,
            format=console_format,
            level=config.log_level,
            colorize=True,
        )

        if not config.log_to_file:
            return

        # ------------------------------------------------------------------
        # File handlers
        # ------------------------------------------------------------------
        os.makedirs(config.log_dir, exist_ok=True)
        file_format = (
            "{time:YYYY-MM-DD HH:mm:ss} | {level:<8} | "
            "{name}:{function}:{line} | {message}"
        )

        logger.add(
            os.path.join(config.log_dir, "droidscript_{time:YYYY-MM-DD}.log"),
            format=file_format,
            level="DEBUG",
            rotation="1 day",
            retention="30 days",
            compression="zip",
        )

        # Separate error log
        logger.add(
            os.path.join(config.log_dir, "errors_{time:YYYY-MM-DD}.log"),
            format=file_format,
            level="ERROR",
            rotation="1 day",
            retention="90 days",
            compression="zip",
        )

    def child(self, name: str) -> Logger:
        """Return a logger for a sub-component sharing the configured sinks."""
        return Logger(f"{self.name}.{name}", configure=False)

    def info(self, message: str, **kwargs: Any) -> None:
        """Log info message."""
        logger.opt(depth=1).info(f"[{self.name}] {message}", **kwargs)

    def debug(self, message: str, **kwargs: Any) -> None:
        """Log debug message."""
        logger.opt(depth=1).debug(f"[{self.name}] {message}", **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        """Log warning message."""
        logger.opt(depth=1).warning(f"[{self.name}] {message}", **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        """Log error message."""
        logger.opt(depth=1).error(f"[{self.name}] {message}", **kwargs)

    def exception(self, message: str, **kwargs: Any) -> None:
        """Log error message with the active exception's traceback."""
        logger.opt(depth=1, exception=True).error(f"[{self.name}] {message}", **kwargs)

    def critical(self, message: str, **kwargs: Any) -> None:
        """Log critical message."""
        logger.opt(depth=1).critical(f"[{self.name}] {message}", **kwargs)

    def success(self, message: str, **kwargs: Any) -> None:
        """Log success message."""
        logger.opt(depth=1).success(f"[{self.name}] {message}", **kwargs)

    def log_automation_step(self, step: str, details: dict[str, Any] | None = None) -> None:
        """Log automation step with details."""
        message = f"AUTOMATION STEP: {step}"
        if details:
            message += f" | Details: {details}"
        self.info(message)

    def log_ai_decision(
        self,
        decision: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Log a recovery agent decision with its context."""
        msg = f"AI DECISION: {decision}"
        if context:
            msg += f" | Context: {context}"
        self.info(msg)

    def log_performance(self, operation: str, duration_ms: float) -> None:
        """Log performance metrics."""
        self.debug(f"PERFORMANCE: {operation} took {duration_ms:.2f}ms")


# Global logger instance
log = Logger()
