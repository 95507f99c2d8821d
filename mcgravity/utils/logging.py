"""Structured logging setup using structlog."""

from __future__ import annotations

import logging
import re
import sys

import structlog


REDACTED = "***REDACTED***"

# Credentials the AI CLIs read from the environment, and the shapes their
# keys take when they end up in a prompt or a tool's error output.
_SENSITIVE_PATTERNS = [
    (
        re.compile(
            r"\b((?:ANTHROPIC|OPENAI|CODEX|GEMINI|GOOGLE)_[A-Z_]*(?:KEY|TOKEN))\s*[:=]\s*[\"']?[^\s\"']+[\"']?"
        ),
        rf"\1={REDACTED}",
    ),
    (
        re.compile(r"(token|api[_-]?key|secret|password)[\"']?\s*[:=]\s*[\"']?[\w\-\.]+", re.IGNORECASE),
        rf"\1={REDACTED}",
    ),
    (re.compile(r"\b(Bearer)\s+[\w\-\.=]+", re.IGNORECASE), rf"\1 {REDACTED}"),
    (re.compile(r"\bsk-(?:ant-)?[A-Za-z0-9_\-]{16,}"), REDACTED),
    (re.compile(r"\bAIza[0-9A-Za-z_\-]{35}\b"), REDACTED),
]


def redact(value: str) -> str:
    for pattern, replacement in _SENSITIVE_PATTERNS:
        value = pattern.sub(replacement, value)
    return value


def _filter_sensitive(
    _logger: structlog.types.WrappedLogger,
    _method: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    for key, value in list(event_dict.items()):
        if isinstance(value, str):
            event_dict[key] = redact(value)
    return event_dict


def setup_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Configure structlog with optional JSON output.

    Logs go to stderr so the flow's own output stream on stdout stays clean.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    # Prompts (and whatever the user pasted into them) are logged at DEBUG
    if numeric_level <= logging.DEBUG:
        print(
            "WARNING: DEBUG logging is enabled. Prompt text and tool output "
            "may appear in logs.",
            file=sys.stderr,
        )

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        _filter_sensitive,
    ]

    if json_output:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric_level)

    logging.getLogger("asyncio").setLevel(max(numeric_level, logging.WARNING))


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
