"""
VBS - Logging Configuration

The terminal belongs to the rich presenter, so log records go to a rotating
file under the VBS home directory. A stderr handler is added only in debug
mode.
"""

import logging
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Optional
from contextvars import ContextVar


# Name of the project the current run is working on
project_var: ContextVar[str] = ContextVar('project', default='')


def get_project() -> str:
    """Get current project name from context"""
    return project_var.get() or ''


def set_project(name: str) -> None:
    """Set project name in context"""
    project_var.set(name)


class ContextualFormatter(logging.Formatter):
    """Formatter that includes the current project name"""

    def format(self, record: logging.LogRecord) -> str:
        record.project = get_project() or '-'
        return super().format(record)


class VBSLogger(logging.Logger):
    """
    Custom logger with convenience methods for structured logging
    """

    def log_phase_event(self, phase: str, event: str, **kwargs) -> None:
        """Log pipeline phase transitions"""
        self.info(
            f"Phase {phase}: {event}",
            extra={
                "event_type": "phase",
                "phase": phase,
                "phase_event": event,
                **kwargs
            }
        )

    def log_llm_call(self, model: str, max_tokens: int, duration_ms: float,
                     stop_reason: Optional[str] = None, output_chars: int = 0,
                     **kwargs) -> None:
        """Log a provider round trip"""
        self.info(
            f"LLM {model} max_tokens={max_tokens} stop={stop_reason} "
            f"chars={output_chars} ({duration_ms:.0f}ms)",
            extra={
                "event_type": "llm_call",
                "model": model,
                "max_tokens": max_tokens,
                "stop_reason": stop_reason,
                "output_chars": output_chars,
                "duration_ms": duration_ms,
                **kwargs
            }
        )

    def log_command(self, command: str, exit_code: int, duration_ms: float,
                    cwd: Optional[str] = None, **kwargs) -> None:
        """Log an external command and its outcome"""
        level = logging.DEBUG if exit_code == 0 else logging.WARNING
        self.log(
            level,
            f"$ {command} -> {exit_code} ({duration_ms:.0f}ms)",
            extra={
                "event_type": "command",
                "command": command,
                "exit_code": exit_code,
                "cwd": cwd,
                "duration_ms": duration_ms,
                **kwargs
            }
        )

    def log_error_with_context(self, error: Exception, context: str = None,
                               **kwargs) -> None:
        """Log error with full context"""
        self.error(
            f"Error in {context}: {type(error).__name__}: {str(error)}",
            exc_info=True,
            extra={
                "event_type": "error",
                "error_type": type(error).__name__,
                "error_message": str(error),
                "error_context": context,
                **kwargs
            }
        )


def setup_logging(log_file: Optional[str] = None, level: str = "INFO",
                  debug: bool = False) -> VBSLogger:
    """Attach handlers to the ``vbs`` logger"""
    logger = get_logger()
    logger.setLevel(logging.DEBUG if debug else getattr(logging, level.upper(), logging.INFO))

    # Clear existing handlers
    logger.handlers.clear()
    logger.propagate = False

    detailed_formatter = ContextualFormatter(
        "%(asctime)s | %(levelname)-8s | [%(project)s] | "
        "%(module)s:%(lineno)d | %(message)s"
    )

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            path,
            maxBytes=10485760,  # 10MB
            backupCount=5
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(detailed_formatter)
        logger.addHandler(file_handler)

    if debug:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.DEBUG)
        console_handler.setFormatter(ContextualFormatter("%(levelname)-8s | %(message)s"))
        logger.addHandler(console_handler)

    if not logger.handlers:
        logger.addHandler(logging.NullHandler())

    # Suppress noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("anthropic").setLevel(logging.WARNING)

    logger.debug("Logging initialized", extra={"log_file": log_file, "debug": debug})
    return logger


def get_logger() -> VBSLogger:
    logging.setLoggerClass(VBSLogger)
    vbs_logger = logging.getLogger("vbs")
    vbs_logger.__class__ = VBSLogger  # Ensure it's our custom class
    return vbs_logger


# Handlers are attached by setup_logging(); until then records are dropped
logger: VBSLogger = get_logger()
if not logger.handlers:
    logger.addHandler(logging.NullHandler())


__all__ = [
    'logger',
    'setup_logging',
    'get_logger',
    'get_project',
    'set_project',
    'VBSLogger',
]
