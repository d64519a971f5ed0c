# Indexwell – Hybrid content indexing and retrieval service
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Structured logging setup (structlog over stdlib logging).

- JSON lines when json_logs=True (containers, log shippers)
- Colored console output otherwise
"""
import logging
import sys

import structlog


def setup_logging(level: str = "INFO", json_logs: bool = False):
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,  # stdout belongs to the MCP stdio transport
        level=level.upper(),
    )

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_logs:
        processors = shared_processors + [structlog.processors.JSONRenderer()]
    else:
        processors = shared_processors + [structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str):
    """Return a logger bound with the module name."""
    return structlog.get_logger(name)
