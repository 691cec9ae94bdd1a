"""
Relay Logging Configuration - Color-Coded Container Logs

Provides:
- ColorFormatter: ANSI color-coded log output
- Helper functions: log_message_in, log_message_out, log_llm, log_mode, log_attachment
- setup_logging(): Configure application logging

Usage:
    from logging_config import setup_logging, log_message_in, log_mode
    setup_logging()
    logger = logging.getLogger(__name__)
    log_message_in(logger, "User question", conversation="c-1")
"""

import logging
import sys

# ANSI color codes
COLORS = {
    "RESET": "\033[0m",
    "BOLD": "\033[1m",
    "DIM": "\033[2m",
    # Event colors
    "MSG_IN": "\033[96m",  # Cyan - incoming message
    "MSG_OUT": "\033[92m",  # Green - outgoing response
    "MODE": "\033[95m",  # Magenta - mode resolution
    "FILE": "\033[93m",  # Yellow - attachment pipeline
    "LLM": "\033[94m",  # Blue - LLM operations
    "ERROR": "\033[91m",  # Red - errors
    "WARN": "\033[33m",  # Orange/Yellow - warnings
    "DEBUG": "\033[90m",  # Gray - debug info
}


class ColorFormatter(logging.Formatter):
    """Custom formatter with colors for different log levels."""

    LEVEL_COLORS = {
        logging.DEBUG: COLORS["DEBUG"],
        logging.INFO: COLORS["RESET"],
        logging.WARNING: COLORS["WARN"],
        logging.ERROR: COLORS["ERROR"],
        logging.CRITICAL: COLORS["ERROR"] + COLORS["BOLD"],
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, COLORS["RESET"])

        # Format: timestamp [LEVEL] message (no module name for compactness)
        timestamp = self.formatTime(record, "%H:%M:%S")
        level = record.levelname[:4]

        formatted = (
            f"{COLORS['DIM']}{timestamp}{COLORS['RESET']} "
            f"[{color}{level}{COLORS['RESET']}] "
            f"{record.getMessage()}"
        )

        if record.exc_info:
            formatted += "\n" + self.formatException(record.exc_info)

        return formatted


def setup_logging(level: int = logging.INFO) -> None:
    """Configure colored logging for the application."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ColorFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers = [handler]

    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)


# =============================================================================
# COLORED LOG HELPER FUNCTIONS
# =============================================================================


def log_message_in(logger: logging.Logger, message: str, **context) -> None:
    """Log incoming user message.

    Args:
        logger: Logger instance
        message: User message text
        **context: Additional context (conversation, mode, duplicate, etc.)
    """
    preview = message[:80] + "..." if len(message) > 80 else message
    ctx = " ".join(f"{k}={v}" for k, v in context.items())
    logger.info(f"{COLORS['MSG_IN']}>>> MESSAGE{COLORS['RESET']} {preview} [{ctx}]")


def log_message_out(
    logger: logging.Logger,
    chars: int = 0,
    tool_calls: int = 0,
    partial: bool = False,
) -> None:
    """Log outgoing (persisted) assistant response.

    Args:
        logger: Logger instance
        chars: Length of the assistant text
        tool_calls: Number of tool calls made during generation
        partial: Whether the turn was cut short by a disconnect
    """
    suffix = " (partial)" if partial else ""
    logger.info(
        f"{COLORS['MSG_OUT']}<<< RESPONSE{COLORS['RESET']} "
        f"chars={chars} tool_calls={tool_calls}{suffix}"
    )


def log_mode(logger: logging.Logger, requested: str, effective: str, conversation_id: str = "") -> None:
    """Log mode resolution (requested -> effective).

    Args:
        logger: Logger instance
        requested: Mode asked for by the caller or conversation
        effective: Concrete mode used for the turn
        conversation_id: Conversation the turn belongs to
    """
    arrow = f" -> {effective}" if requested == "auto" else ""
    logger.info(f"{COLORS['MODE']}=== MODE{COLORS['RESET']} {requested}{arrow} (conversation: {conversation_id})")


def log_attachment(logger: logging.Logger, attachment_id: str, status: str, **context) -> None:
    """Log an attachment extraction status transition."""
    ctx = " ".join(f"{k}={v}" for k, v in context.items()) if context else ""
    logger.info(f"{COLORS['FILE']}... FILE{COLORS['RESET']} {attachment_id} -> {status} {ctx}".rstrip())


def log_llm(
    logger: logging.Logger,
    state: str,
    model: str = "",
    duration: float = 0,
) -> None:
    """Log LLM call.

    Args:
        logger: Logger instance
        state: 'start' or 'end'
        model: Model name
        duration: Call duration in seconds (for end state)
    """
    if state == "start":
        logger.info(f"{COLORS['LLM']}>>> LLM{COLORS['RESET']} calling {model}")
    else:
        logger.info(f"{COLORS['LLM']}<<< LLM{COLORS['RESET']} " f"{model} completed in {duration:.1f}s")
